"""
Discord Rich Presence client (pypresence over local IPC).

Contract relied on by SessionManager:

    client = PresenceClient(on_connected=callback)
    await client.connect(client_id)     # handshake; then fires on_connected
    await client.set_activity(payload)  # raises SendError
    await client.destroy()

The connected signal is delivered through the callback, not through the
return of connect().  A client is single-use: once Discord closes an idle
connection, calling connect() again on the same object cannot be relied on
to signal success, so callers must destroy it and build a new one.
"""

import asyncio
import inspect
import logging

from pypresence import AioPresence

from .errors import SendError

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds
SEND_TIMEOUT = 5.0


class PresenceClient:
    def __init__(self, on_connected=None, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT):
        self._on_connected = on_connected
        self._connect_timeout = connect_timeout
        self._rpc: AioPresence | None = None
        self._destroyed = False
        self.client_id: str | None = None

    async def connect(self, client_id: str):
        """Handshake with the local Discord client. Raises on failure."""
        if self._destroyed:
            raise RuntimeError("PresenceClient was destroyed — create a new one")
        self.client_id = client_id
        self._rpc = AioPresence(client_id)
        await asyncio.wait_for(self._rpc.connect(), timeout=self._connect_timeout)
        logger.info("Connected to Discord (application %s)", client_id)
        if self._on_connected:
            await self._on_connected(self)

    async def set_activity(self, payload):
        if self._rpc is None:
            raise SendError("Not connected to Discord")
        try:
            await asyncio.wait_for(self._rpc.update(
                details=payload.details,
                state=payload.state,
                start=payload.start_timestamp // 1000,
                large_image=payload.large_image_key,
                large_text=payload.image_text,
                small_image=payload.small_image_key or None,
                small_text=payload.small_image_text or None,
            ), timeout=SEND_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise SendError("Discord did not acknowledge the update in time") from e
        except Exception as e:
            raise SendError(str(e)) from e

    async def destroy(self):
        """Close the IPC connection. Safe to call more than once."""
        self._destroyed = True
        rpc, self._rpc = self._rpc, None
        if rpc is None:
            return
        try:
            result = rpc.close()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.debug("Error closing Discord connection: %s", e)
