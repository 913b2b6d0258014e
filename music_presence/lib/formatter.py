"""
Presence payloads for local playback and station streaming.

Discord keeps advancing the elapsed time on its own, so local playback sends
a start timestamp of ``now - position`` and nothing else until the track
changes.  A live stream has no position: its timestamp is simply "now".
"""

import logging
import time
from dataclasses import asdict, dataclass, replace

from .. import __version__
from .bridge import PlaybackFacts, PlayerBridge
from .stations import UNKNOWN, NowPlaying, StationRecord

logger = logging.getLogger(__name__)

DEFAULT_LARGE_IMAGE_KEY = "itunes"
DEFAULT_SMALL_IMAGE_KEY = "github"
DEFAULT_SMALL_IMAGE_TEXT = f"music-presence {__version__}"
MAX_FIELD_LENGTH = 128  # Discord rejects longer text fields


@dataclass(frozen=True)
class PresencePayload:
    details: str
    state: str
    image_text: str
    start_timestamp: int  # epoch milliseconds
    large_image_key: str = DEFAULT_LARGE_IMAGE_KEY
    small_image_key: str = ""
    small_image_text: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def parse_seconds(value: str) -> float:
    """Player position as float seconds; unparseable values count as 0."""
    try:
        return float(value.replace(",", "."))
    except (ValueError, AttributeError):
        return 0.0


def _fit(prefix: str, value: str, suffix: str = "") -> str:
    """Shorten *value* so prefix + value + suffix stays within the field limit."""
    room = max(MAX_FIELD_LENGTH - len(prefix) - len(suffix), 0)
    return (prefix + value[:room] + suffix)[:MAX_FIELD_LENGTH]


def build_local_payload(facts: PlaybackFacts, position: float, duration: str,
                        now_ms: int,
                        large_image_key: str = DEFAULT_LARGE_IMAGE_KEY) -> PresencePayload:
    return PresencePayload(
        details=_fit("🎵  ", facts.name, f" [{duration}]"),
        state=_fit("👤  ", facts.artist),
        image_text=_fit("💿  ", facts.album),
        start_timestamp=int(now_ms - position * 1000),
        large_image_key=large_image_key,
    )


def build_station_payload(playing: NowPlaying, station: StationRecord | None,
                          now_ms: int,
                          default_image_key: str = DEFAULT_LARGE_IMAGE_KEY) -> PresencePayload:
    if playing.album and playing.album != UNKNOWN:
        image_text = playing.album
    else:
        image_text = station.display_name if station else UNKNOWN
    return PresencePayload(
        details=_fit("🎵  ", playing.track),
        state=_fit("👤  ", playing.artist),
        image_text=_fit("📻  ", image_text),
        start_timestamp=int(now_ms),
        large_image_key=station.icon_key if station else default_image_key,
    )


class PresenceFormatter:
    """Builds payloads for both modes and hands them to the session manager."""

    def __init__(self, bridge: PlayerBridge, session_manager, clock=time.time,
                 large_image_key: str = DEFAULT_LARGE_IMAGE_KEY,
                 small_image_key: str = DEFAULT_SMALL_IMAGE_KEY,
                 small_image_text: str = DEFAULT_SMALL_IMAGE_TEXT):
        self._bridge = bridge
        self._session = session_manager
        self._clock = clock
        self.large_image_key = large_image_key
        self.small_image_key = small_image_key
        self.small_image_text = small_image_text
        self.last_sent: PresencePayload | None = None

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def send_local(self, facts: PlaybackFacts) -> bool:
        position = parse_seconds(await self._bridge.position())
        duration = await self._bridge.duration()
        payload = build_local_payload(facts, position, duration, self.now_ms(),
                                      large_image_key=self.large_image_key)
        logger.info('Now playing "%s" from "%s" on "%s"', facts.name, facts.artist, facts.album)
        return await self.send_activity(payload)

    async def send_station(self, playing: NowPlaying, station: StationRecord | None) -> bool:
        payload = build_station_payload(playing, station, self.now_ms(),
                                        default_image_key=self.large_image_key)
        logger.info('Streaming "%s" from "%s" on %s', playing.track, playing.artist,
                    station.display_name if station else "unknown station")
        return await self.send_activity(payload)

    async def send_activity(self, payload: PresencePayload) -> bool:
        """Add the branding fields and forward. Failures are logged, not raised."""
        payload = replace(payload, small_image_key=self.small_image_key,
                          small_image_text=self.small_image_text)
        try:
            ok = await self._session.set_activity(payload)
        except Exception as e:
            logger.error("Presence update failed: %s", e)
            return False
        if ok:
            self.last_sent = payload
        return ok
