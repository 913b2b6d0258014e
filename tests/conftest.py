"""Pytest configuration and fixtures."""

import asyncio
import json

import pytest

from music_presence.lib import config
from music_presence.lib.bridge import PlaybackFacts
from music_presence.lib.errors import SendError
from music_presence.lib.session import Profile

LOCAL_ID = "111111111111111111"
STATION_ID = "222222222222222222"
CLIENT_IDS = {Profile.LOCAL: LOCAL_ID, Profile.STATION: STATION_ID}

NOW = 1_700_000_000.0  # fixed wall clock, seconds
NOW_MS = int(NOW * 1000)


class FakeBridge:
    """Stands in for PlayerBridge; tests set the attributes directly."""

    application = "Music"

    def __init__(self):
        self.state = "playing"
        self.facts = PlaybackFacts()
        self.elapsed = "0"
        self.total = "3:45"
        self.state_queries = 0

    async def player_state(self):
        self.state_queries += 1
        return self.state

    async def playback_facts(self):
        return self.facts

    async def position(self):
        return self.elapsed

    async def duration(self):
        return self.total

    async def version(self):
        return "1.4.5"


class FakePresenceClient:
    def __init__(self, on_connected=None):
        self.on_connected = on_connected
        self.connect_calls = []
        self.activities = []
        self.destroyed = False
        self.fail_connect = False
        self.fail_send = False

    async def connect(self, client_id):
        self.connect_calls.append(client_id)
        if self.fail_connect:
            raise ConnectionError("Discord is not running")
        if self.on_connected:
            await self.on_connected(self)

    async def set_activity(self, payload):
        if self.fail_send:
            raise SendError("rejected")
        self.activities.append(payload)

    async def destroy(self):
        self.destroyed = True


class ClientFactory:
    """Records every presence client the session manager builds."""

    def __init__(self):
        self.clients = []
        self.fail_connect = False

    def __call__(self, on_connected):
        client = FakePresenceClient(on_connected)
        client.fail_connect = self.fail_connect
        self.clients.append(client)
        return client

    @property
    def current(self):
        return self.clients[-1]

    @property
    def sent(self):
        return [p for c in self.clients for p in c.activities]


async def settle(session):
    """Wait for a pending fire-and-forget connect to finish."""
    task = session._connect_task
    if task is not None and not task.done():
        await asyncio.wait_for(task, timeout=1)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Never share the cached config between tests."""
    monkeypatch.setattr(config, "_config", None)
    monkeypatch.delenv(config.CONFIG_ENV, raising=False)
    yield


@pytest.fixture
def write_config(tmp_path, monkeypatch):
    """Write a config dict to a temp file and point the loader at it."""
    def _write(data):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(data))
        monkeypatch.setenv(config.CONFIG_ENV, str(path))
        config.reload_config()
        return path
    return _write


@pytest.fixture
def bridge():
    return FakeBridge()


@pytest.fixture
def client_factory():
    return ClientFactory()
