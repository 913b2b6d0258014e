# music-presence
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
SessionManager — owns the Discord presence connection and the active profile.

States and transitions:

    DISCONNECTED --connect-->   CONNECTING      (fire-and-forget handshake)
    CONNECTING   --connected--> CONNECTED       (signal from the client)
    CONNECTING   --failed-->    DISCONNECTED
    CONNECTED    --teardown-->  DISCONNECTED    (profile switch / playback stopped)
    CONNECTING   --teardown-->  DISCONNECTED

Teardown always destroys the client and builds a fresh one.  Discord closes
idle connections when nothing is playing, and calling connect() again on the
same client afterwards does not reliably fire the connected signal.  Any
transport that replaces pypresence must keep this destroy-and-recreate
behaviour.

A profile is a logical presence identity (one Discord application each).
There is no CONNECTED → CONNECTED profile change: switching always tears
down first, and the next playing tick connects with the new profile.
"""

import asyncio
import logging
from enum import Enum

from .errors import SendError, SessionStateError
from .presence_client import DEFAULT_CONNECT_TIMEOUT, PresenceClient

logger = logging.getLogger(__name__)


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Profile(Enum):
    LOCAL = "local"
    STATION = "station"


_TRANSITIONS = {
    (SessionState.DISCONNECTED, "connect"): SessionState.CONNECTING,
    (SessionState.CONNECTING, "connected"): SessionState.CONNECTED,
    (SessionState.CONNECTING, "failed"): SessionState.DISCONNECTED,
    (SessionState.CONNECTING, "teardown"): SessionState.DISCONNECTED,
    (SessionState.CONNECTED, "teardown"): SessionState.DISCONNECTED,
}


class SessionManager:
    def __init__(self, client_ids: dict, client_factory=None,
                 on_connected=None, on_reset=None,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        """
        client_ids:      Profile → Discord application id
        client_factory:  callable(on_connected) → PresenceClient-like object
        on_connected:    async callback run after entering CONNECTED
        on_reset:        callback run on every teardown (clears fingerprints)
        """
        self._client_ids = client_ids
        self._client_factory = client_factory or (
            lambda cb: PresenceClient(on_connected=cb, connect_timeout=connect_timeout))
        self._on_connected = on_connected
        self._on_reset = on_reset
        self.state = SessionState.DISCONNECTED
        self.profile: Profile | None = None        # profile of the live connection
        self.active_profile = Profile.LOCAL        # profile to use on next connect
        self._connect_task: asyncio.Task | None = None
        self._client = self._new_client()

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    @property
    def client(self):
        return self._client

    def _new_client(self):
        return self._client_factory(self._handle_connected)

    def _transition(self, event: str):
        target = _TRANSITIONS.get((self.state, event))
        if target is None:
            raise SessionStateError(f"'{event}' not allowed while {self.state.value}")
        logger.debug("Session %s --%s--> %s", self.state.value, event, target.value)
        self.state = target

    # ── Connect ──

    def connect(self, profile: Profile | None = None) -> bool:
        """Start connecting with *profile* (default: the active profile).

        Returns immediately; success arrives later via the client's signal.
        """
        profile = profile or self.active_profile
        try:
            self._transition("connect")
        except SessionStateError as e:
            logger.warning("Ignoring connect request: %s", e)
            return False
        self.active_profile = profile
        self.profile = None
        self._connect_task = asyncio.create_task(self._connect(self._client, profile))
        return True

    async def _connect(self, client, profile: Profile):
        client_id = self._client_ids.get(profile) or self._client_ids.get(Profile.LOCAL)
        logger.info("Connecting to Discord (%s profile)", profile.value)
        try:
            await client.connect(client_id)
        except Exception as e:
            logger.error("Discord connection failed: %s", e)
            if client is self._client and self.state is SessionState.CONNECTING:
                self._transition("failed")

    async def _handle_connected(self, client):
        """Connected signal from a client. Stale clients are ignored."""
        if client is not self._client:
            logger.debug("Ignoring connected signal from a replaced client")
            return
        try:
            self._transition("connected")
        except SessionStateError as e:
            logger.warning("Unexpected connected signal: %s", e)
            return
        self.profile = self.active_profile
        logger.info("Presence session connected (%s profile)", self.profile.value)
        if self._on_connected:
            await self._on_connected()

    # ── Teardown ──

    async def teardown(self):
        """Destroy the client and replace it with a fresh one."""
        try:
            self._transition("teardown")
        except SessionStateError as e:
            logger.debug("Nothing to tear down: %s", e)
            return
        old, self._client = self._client, self._new_client()
        self.profile = None
        task = self._connect_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        try:
            await old.destroy()
        except Exception as e:
            logger.warning("Error destroying presence client: %s", e)
        if self._on_reset:
            self._on_reset()
        logger.info("Presence session closed")

    async def switch_profile(self, profile: Profile):
        logger.info("Switching presence profile %s → %s",
                    self.profile.value if self.profile else "none", profile.value)
        await self.teardown()
        self.active_profile = profile

    # ── Activity ──

    async def set_activity(self, payload) -> bool:
        if not self.connected:
            logger.debug("Dropping presence update while %s", self.state.value)
            return False
        try:
            await self._client.set_activity(payload)
            return True
        except SendError as e:
            logger.error("Discord rejected presence update: %s", e)
            return False

    async def close(self):
        """Shutdown: cancel a pending handshake and destroy the client."""
        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()
            try:
                await self._connect_task
            except (asyncio.CancelledError, Exception):
                pass
        await self._client.destroy()
        self.state = SessionState.DISCONNECTED
        self.profile = None
