# music-presence
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Reconciler — the poll loop that keeps Discord in sync with the player.

On every tick:

    player state == "playing"
        DISCONNECTED → connect with the active profile
        CONNECTING   → wait for the connected signal
        CONNECTED    → check_current_state()
    anything else
        not DISCONNECTED → teardown-and-recreate (clears fingerprints)

check_current_state() is also run right after the session connects, since
the handshake usually completes after the tick that requested it.  Ticks and
those re-evaluations share one lock so sends never interleave.
"""

import asyncio
import logging

from .lib.bridge import PlaybackFacts, PlayerBridge
from .lib.change_detector import ChangeDetector, Lane
from .lib.errors import FetchError, ResolutionError
from .lib.formatter import PresenceFormatter
from .lib.session import Profile, SessionManager, SessionState
from .lib.stations import StationResolver

logger = logging.getLogger(__name__)

PLAYING = "playing"
DEFAULT_POLL_INTERVAL = 1.0  # seconds


def implied_profile(facts: PlaybackFacts) -> Profile | None:
    if facts.is_complete:
        return Profile.LOCAL
    if facts.is_station_candidate:
        return Profile.STATION
    return None


class Reconciler:
    def __init__(self, bridge: PlayerBridge, stations: StationResolver,
                 client_ids: dict, client_factory=None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 connect_timeout: float | None = None, formatter_options: dict | None = None,
                 clock=None):
        self.bridge = bridge
        self.stations = stations
        self.detector = ChangeDetector()
        session_kwargs = {}
        if connect_timeout is not None:
            session_kwargs["connect_timeout"] = connect_timeout
        self.session = SessionManager(
            client_ids,
            client_factory=client_factory,
            on_connected=self.check_current_state,
            on_reset=self.detector.reset,
            **session_kwargs,
        )
        formatter_kwargs = dict(formatter_options or {})
        if clock is not None:
            formatter_kwargs["clock"] = clock
        self.formatter = PresenceFormatter(bridge, self.session, **formatter_kwargs)
        self.poll_interval = poll_interval
        self.running = False
        self.ticks = 0
        self.last_player_state = ""
        self._lock = asyncio.Lock()

    # ── Tick ──

    async def tick(self):
        async with self._lock:
            self.ticks += 1
            state = await self.bridge.player_state()
            if state != self.last_player_state:
                logger.info("Player state: %s", state or "unknown")
            self.last_player_state = state

            if state == PLAYING:
                if self.session.state is SessionState.DISCONNECTED:
                    self.session.connect(self.session.active_profile)
                elif self.session.state is SessionState.CONNECTED:
                    await self._evaluate()
            elif self.session.state is not SessionState.DISCONNECTED:
                logger.info("Nothing is played.")
                await self.session.teardown()

    async def check_current_state(self):
        """Re-evaluate playback right after the session connects."""
        async with self._lock:
            try:
                await self._evaluate()
            except Exception as e:
                logger.error("Error evaluating playback after connect: %s", e)

    async def _evaluate(self):
        facts = await self.bridge.playback_facts()
        requested = implied_profile(facts)
        if requested is None:
            logger.debug("Incomplete track data, nothing to send")
            return

        if requested is not self.session.profile:
            await self.session.switch_profile(requested)
            return

        if requested is Profile.LOCAL:
            await self._update_local(facts)
        else:
            await self._update_station(facts.name)

    async def _update_local(self, facts: PlaybackFacts):
        is_changed, fp = self.detector.check(Lane.LOCAL, facts.name, facts.artist, facts.album)
        if not is_changed:
            return
        if await self.formatter.send_local(facts):
            self.detector.commit(Lane.LOCAL, fp)

    async def _update_station(self, name: str):
        try:
            station, playing = await self.stations.now_playing(name)
        except ResolutionError as e:
            logger.warning("Station lookup failed: %s", e)
            return
        except FetchError as e:
            logger.warning("Now-playing refresh failed: %s", e)
            return

        is_changed, fp = self.detector.check(
            Lane.STATION, station.display_name, playing.track, playing.artist, playing.album)
        if not is_changed:
            return
        if await self.formatter.send_station(playing, station):
            self.detector.commit(Lane.STATION, fp)

    # ── Loop ──

    async def run(self):
        """Tick every poll_interval seconds until stop() is called."""
        self.running = True
        logger.info("Polling %s every %ss", self.bridge.application, self.poll_interval)
        while self.running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in poll loop: %s", e)
            await asyncio.sleep(self.poll_interval)

    def stop(self):
        self.running = False

    async def close(self):
        self.stop()
        await self.session.close()

    def get_status(self) -> dict:
        active = self.stations.active
        sent = self.formatter.last_sent
        return {
            "application": self.bridge.application,
            "player_state": self.last_player_state,
            "session": self.session.state.value,
            "profile": self.session.profile.value if self.session.profile else None,
            "active_profile": self.session.active_profile.value,
            "station": {
                "name": active.display_name,
                "id": active.station_id,
                "icon": active.icon_key,
            } if active else None,
            "last_sent": {
                "details": sent.details,
                "state": sent.state,
            } if sent else None,
            "ticks": self.ticks,
        }
