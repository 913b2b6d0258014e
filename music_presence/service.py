#!/usr/bin/env python3
# music-presence
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
music-presence service (music-presence)

Polls Apple Music / iTunes for now-playing state and mirrors it to Discord
Rich Presence.  Local tracks show title, artist, album and elapsed time;
radio streams are looked up by station name to show what the station plays.

HTTP API (localhost only, port 8779 by default):
  GET /status  — session state, active profile/station, last update sent
"""

import argparse
import asyncio
import logging
import os
import signal

from aiohttp import web

from .lib.bridge import DEFAULT_QUERY_TIMEOUT, PlayerBridge
from .lib.config import CONFIG_ENV, cfg, reload_config
from .lib.errors import ConfigurationError
from .lib.fetch import DEFAULT_FETCH_TIMEOUT, create_session
from .lib.formatter import (DEFAULT_LARGE_IMAGE_KEY, DEFAULT_SMALL_IMAGE_KEY,
                            DEFAULT_SMALL_IMAGE_TEXT)
from .lib.presence_client import DEFAULT_CONNECT_TIMEOUT
from .lib.session import Profile
from .lib.stations import DEFAULT_LOOKUP_URL, DEFAULT_NOWPLAYING_URL, StationResolver
from .reconciler import DEFAULT_POLL_INTERVAL, Reconciler

logger = logging.getLogger('music-presence')

DEFAULT_STATUS_HOST = "127.0.0.1"
DEFAULT_STATUS_PORT = 8779


def client_ids_from_config() -> dict:
    local_id = str(cfg("presence", "local_client_id", default="") or "")
    if not local_id:
        raise ConfigurationError("presence.local_client_id is not set")
    station_id = str(cfg("presence", "station_client_id", default="") or "") or local_id
    return {Profile.LOCAL: local_id, Profile.STATION: station_id}


class PresenceService:
    """Wires the reconciler to config, the HTTP session and the status API."""

    def __init__(self):
        self._http_session = None
        self._runner: web.AppRunner | None = None
        self._loop_task: asyncio.Task | None = None
        self.reconciler: Reconciler | None = None

    def build(self):
        client_ids = client_ids_from_config()
        fetch_timeout = float(cfg("stations", "fetch_timeout", default=DEFAULT_FETCH_TIMEOUT))
        self._http_session = create_session(timeout=fetch_timeout)
        bridge = PlayerBridge(
            application=cfg("player", "application", default="") or None,
            timeout=float(cfg("player", "query_timeout", default=DEFAULT_QUERY_TIMEOUT)),
        )
        stations = StationResolver(
            self._http_session,
            lookup_url=cfg("stations", "lookup_url", default=DEFAULT_LOOKUP_URL),
            nowplaying_url=cfg("stations", "nowplaying_url", default=DEFAULT_NOWPLAYING_URL),
            api_key=cfg("stations", "api_key", default=""),
            timeout=fetch_timeout,
        )
        self.reconciler = Reconciler(
            bridge, stations, client_ids,
            poll_interval=float(cfg("player", "poll_interval", default=DEFAULT_POLL_INTERVAL)),
            connect_timeout=float(cfg("presence", "connect_timeout", default=DEFAULT_CONNECT_TIMEOUT)),
            formatter_options={
                "large_image_key": cfg("presence", "large_image_key", default=DEFAULT_LARGE_IMAGE_KEY),
                "small_image_key": cfg("presence", "small_image_key", default=DEFAULT_SMALL_IMAGE_KEY),
                "small_image_text": cfg("presence", "small_image_text", default="") or DEFAULT_SMALL_IMAGE_TEXT,
            },
        )
        return self.reconciler

    # ── Status API ──

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/status", self._handle_status)
        return app

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.reconciler.get_status())

    # ── Lifecycle ──

    async def start(self):
        if self.reconciler is None:
            self.build()

        version = await self.reconciler.bridge.version()
        logger.info("%s %s", self.reconciler.bridge.application, version or "(version unknown)")

        await self.reconciler.stations.load_icon_map(cfg("stations", "icon_map_url", default=""))

        port = int(cfg("status", "port", default=DEFAULT_STATUS_PORT))
        if port:
            host = cfg("status", "host", default=DEFAULT_STATUS_HOST)
            self._runner = web.AppRunner(self.create_app())
            await self._runner.setup()
            site = web.TCPSite(self._runner, host, port)
            try:
                await site.start()
                logger.info("Status API on http://%s:%d/status", host, port)
            except OSError as e:
                logger.warning("Could not start status API on port %d: %s", port, e)

        self._loop_task = asyncio.create_task(self.reconciler.run())

    async def run(self):
        """Start, wait for SIGINT/SIGTERM, stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        if self.reconciler:
            self.reconciler.stop()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if self.reconciler:
            await self.reconciler.close()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self._http_session:
            await self._http_session.close()
            self._http_session = None
        logger.info("Stopped")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="music-presence",
        description="Mirror Apple Music / iTunes now-playing state to Discord.")
    parser.add_argument("--config", metavar="PATH", help="path to config.json")
    parser.add_argument("--debug", action="store_true",
                        default=bool(os.getenv("MUSIC_PRESENCE_DEBUG")),
                        help="verbose logging")
    return parser.parse_args(argv)


async def _main(args):
    if args.config:
        os.environ[CONFIG_ENV] = args.config
        reload_config()
    service = PresenceService()
    await service.run()


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(_main(args))
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
