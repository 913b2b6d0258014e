# music-presence
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
StationResolver — maps a streaming station's display name to station data.

When the player streams a radio station it only reports the station's name.
The resolver turns that name into a station id by scraping the station's
lookup page, then asks the now-playing API what the station is playing.

    resolver = StationResolver(session)
    await resolver.load_icon_map(url)              # once, at startup
    station, playing = await resolver.now_playing("1LIVE")

Station ids are memoized by display name.  While a station is active, repeat
requests for it skip resolution entirely and only refresh the track data.
"""

import logging
import re
from dataclasses import dataclass
from urllib.parse import quote

import aiohttp

from .errors import FetchError, ResolutionError
from .fetch import DEFAULT_FETCH_TIMEOUT, fetch_json, fetch_text

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_URL = "https://www.radio.net/s/{slug}"
DEFAULT_NOWPLAYING_URL = (
    "https://api.radio.net/info/v2/search/nowplaying"
    "?apikey={api_key}&numberoftitles=1&station={station_id}"
)
UNKNOWN = "N/A"
STREAM_TITLE_SEPARATOR = " - "

# stationPage = { id: '12345' ... }, quotes optional
_STATION_ID_RE = re.compile(r"""stationPage\s*=\s*\{\s*["']?id["']?\s*:\s*["']?(\d+)["']?""")


def station_slug(name: str) -> str:
    """Convert a display name to a lookup slug: '1LIVE diggi' -> '1livediggi'."""
    slug = re.sub(r"[^a-z0-9]", "", name.lower().strip())
    return slug or "default"


def parse_station_id(page: str) -> str | None:
    match = _STATION_ID_RE.search(page)
    return match.group(1) if match else None


@dataclass(frozen=True)
class StationRecord:
    display_name: str
    station_id: str
    icon_key: str


@dataclass(frozen=True)
class NowPlaying:
    track: str
    artist: str
    album: str = ""


def parse_now_playing(data) -> NowPlaying:
    """Build a NowPlaying from the API's single-element list.

    Missing artist/track are taken from the combined stream title
    ("Artist - Track"), and default to "N/A" when still absent.
    """
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        raise FetchError("Unexpected now-playing response")
    entry = data[0]

    artist = entry.get("artistName") or ""
    track = entry.get("songName") or ""
    if not artist or not track:
        parts = (entry.get("streamTitle") or "").split(STREAM_TITLE_SEPARATOR)
        if not artist and len(parts) > 0:
            artist = parts[0].strip()
        if not track and len(parts) > 1:
            track = parts[1].strip()

    return NowPlaying(
        track=track or UNKNOWN,
        artist=artist or UNKNOWN,
        album=entry.get("albumName") or "",
    )


class StationResolver:
    """Resolves station names and refreshes what the active station plays."""

    def __init__(self, session: aiohttp.ClientSession,
                 lookup_url: str = DEFAULT_LOOKUP_URL,
                 nowplaying_url: str = DEFAULT_NOWPLAYING_URL,
                 api_key: str = "",
                 timeout: float = DEFAULT_FETCH_TIMEOUT):
        self._session = session
        self.lookup_url = lookup_url
        self.nowplaying_url = nowplaying_url
        self.api_key = api_key
        self.timeout = timeout
        self._icon_map: dict[str, str] = {}
        self._ids: dict[str, str] = {}
        self.active: StationRecord | None = None

    # ── Icon keys ──

    async def load_icon_map(self, url: str | None):
        """Fetch the name → icon key mapping. Never raises.

        On any failure the mapping stays empty and every station uses its
        display name as icon key.
        """
        self._icon_map = {}
        if not url:
            logger.info("No station icon map configured")
            return
        try:
            data = await fetch_json(self._session, url, timeout=self.timeout)
        except FetchError as e:
            logger.warning("Could not load station icon map: %s", e)
            return
        if not isinstance(data, dict):
            logger.warning("Station icon map is not a JSON object — ignoring")
            return
        self._icon_map = {str(k): str(v) for k, v in data.items()}
        logger.info("Loaded %d station icons", len(self._icon_map))

    def icon_key(self, name: str) -> str:
        return self._icon_map.get(name, name)

    # ── Resolution ──

    def _lookup_url_for(self, name: str) -> str:
        return self.lookup_url.format(slug=station_slug(name), name=quote(name))

    async def resolve(self, name: str) -> StationRecord:
        """Resolve *name* to a StationRecord, memoized by name.

        Raises ResolutionError when the lookup page cannot be fetched or
        holds no station id.
        """
        station_id = self._ids.get(name)
        if station_id is None:
            url = self._lookup_url_for(name)
            try:
                page = await fetch_text(self._session, url, timeout=self.timeout)
            except FetchError as e:
                raise ResolutionError(f"Lookup for station '{name}' failed: {e}") from e
            station_id = parse_station_id(page)
            if station_id is None:
                raise ResolutionError(f"No station id found for '{name}' at {url}")
            self._ids[name] = station_id
            logger.info("Resolved station '%s' → %s", name, station_id)
        return StationRecord(display_name=name, station_id=station_id,
                             icon_key=self.icon_key(name))

    async def fetch_now_playing(self, station_id: str) -> NowPlaying:
        url = self.nowplaying_url.format(api_key=quote(self.api_key),
                                         station_id=quote(station_id))
        data = await fetch_json(self._session, url, timeout=self.timeout)
        return parse_now_playing(data)

    async def now_playing(self, name: str) -> tuple[StationRecord, NowPlaying]:
        """Return the station for *name* and what it is playing.

        Raises ResolutionError (previous active station kept) or FetchError.
        """
        if self.active is None or self.active.display_name != name:
            self.active = await self.resolve(name)
        playing = await self.fetch_now_playing(self.active.station_id)
        return self.active, playing
