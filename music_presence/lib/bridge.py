"""
AppleScript bridge to the local media player (Music / iTunes).

Every query runs ``osascript -e <script>`` in a subprocess with a bounded
timeout.  The bridge never raises to its callers: failures are logged and
reported as an empty string, which the reconciler treats as absent data.

Depending on the macOS release the player application is named differently:

    macOS <= 10.14 (Mojave)   → iTunes
    macOS >= 10.15 (Catalina) → Music
"""

import asyncio
import logging
import platform
from dataclasses import dataclass

from .errors import BridgeError

logger = logging.getLogger(__name__)

OSASCRIPT = "osascript"
DEFAULT_QUERY_TIMEOUT = 5.0  # seconds


def detect_application_name(release: str | None = None) -> str:
    """Return the player application name for this Darwin kernel release."""
    release = platform.release() if release is None else release
    try:
        major = int(release.split(".")[0])
    except (ValueError, IndexError):
        return "Music"
    return "Music" if major >= 19 else "iTunes"


@dataclass(frozen=True)
class PlaybackFacts:
    """Name, artist and album of the player's current track."""

    name: str = ""
    artist: str = ""
    album: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.name and self.artist and self.album)

    @property
    def is_station_candidate(self) -> bool:
        # Streams report only a name; artist and album stay empty.
        return bool(self.name) and not self.artist and not self.album


class PlayerBridge:
    """Queries the media player through osascript."""

    def __init__(self, application: str | None = None,
                 timeout: float = DEFAULT_QUERY_TIMEOUT):
        self.application = application or detect_application_name()
        self.timeout = timeout

    async def _run(self, script: str) -> str:
        """Run one AppleScript snippet. Raises BridgeError on any failure."""
        try:
            proc = await asyncio.create_subprocess_exec(
                OSASCRIPT, "-e", script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BridgeError(f"{OSASCRIPT} not found — this service requires macOS") from e
        except OSError as e:
            raise BridgeError(f"Could not start {OSASCRIPT}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise BridgeError(f"osascript timed out after {self.timeout}s") from e

        if proc.returncode != 0:
            raise BridgeError(f"osascript failed (rc={proc.returncode}): "
                              f"{stderr.decode(errors='replace').strip()}")
        return stdout.decode(errors="replace").strip()

    async def query(self, script: str) -> str:
        """Run *script* and return its output, or "" on failure."""
        try:
            return await self._run(script)
        except BridgeError as e:
            logger.warning("Player query failed: %s", e)
            return ""

    async def tell(self, expression: str) -> str:
        """``tell application "<player>" to get <expression>``."""
        return await self.query(f'tell application "{self.application}" to get {expression}')

    # ── Convenience queries ──

    async def player_state(self) -> str:
        """Return "playing", "paused", "stopped", ... or "" when unknown."""
        return await self.tell("player state")

    async def playback_facts(self) -> PlaybackFacts:
        name = await self.tell("name of current track")
        artist = await self.tell("artist of current track")
        album = await self.tell("album of current track")
        return PlaybackFacts(name=name, artist=artist, album=album)

    async def position(self) -> str:
        """Elapsed seconds of the current track, as reported by the player."""
        return await self.tell("player position")

    async def duration(self) -> str:
        """Total time of the current track, e.g. "3:45"."""
        return await self.tell("time of current track")

    async def version(self) -> str:
        return await self.query(f'version of app "{self.application}"')
