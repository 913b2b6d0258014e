"""Tests for the poll loop / reconciler."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from music_presence.lib.bridge import PlaybackFacts
from music_presence.lib.change_detector import EMPTY, Lane
from music_presence.lib.session import Profile, SessionState
from music_presence.lib.stations import StationResolver
from music_presence.reconciler import Reconciler, implied_profile

from .conftest import CLIENT_IDS, LOCAL_ID, NOW, NOW_MS, STATION_ID, settle

SONG = PlaybackFacts("Song A", "Artist X", "Album Y")
STATION = PlaybackFacts("StationName", "", "")
PAGE = "window.stationPage = { id: '12345' };"
NOW_PLAYING = [{"songName": "", "artistName": "", "streamTitle": "Artist Name - Track Title"}]


@pytest.fixture
def stations():
    return StationResolver(session=None)


@pytest.fixture
def reconciler(bridge, stations, client_factory):
    return Reconciler(bridge, stations, CLIENT_IDS, client_factory=client_factory,
                      poll_interval=0.01, clock=lambda: NOW)


@pytest.fixture
def station_http():
    fetch_text = AsyncMock(return_value=PAGE)
    fetch_json = AsyncMock(return_value=NOW_PLAYING)
    with patch("music_presence.lib.stations.fetch_text", fetch_text), \
            patch("music_presence.lib.stations.fetch_json", fetch_json):
        yield fetch_text, fetch_json


async def tick(reconciler):
    await reconciler.tick()
    await settle(reconciler.session)


def test_implied_profile():
    assert implied_profile(SONG) is Profile.LOCAL
    assert implied_profile(STATION) is Profile.STATION
    assert implied_profile(PlaybackFacts("Name", "Artist", "")) is None
    assert implied_profile(PlaybackFacts()) is None


class TestLocalPlayback:
    async def test_first_tick_connects_then_sends(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        await reconciler.tick()
        assert reconciler.session.state is SessionState.CONNECTING
        assert client_factory.sent == []

        await settle(reconciler.session)
        assert reconciler.session.state is SessionState.CONNECTED
        assert client_factory.current.connect_calls == [LOCAL_ID]
        assert len(client_factory.sent) == 1

    async def test_identical_facts_send_once(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        for _ in range(5):
            await tick(reconciler)
        assert len(client_factory.sent) == 1

    async def test_artist_change_sends_again(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        await tick(reconciler)
        await tick(reconciler)
        bridge.facts = PlaybackFacts("Song A", "Artist Z", "Album Y")
        await tick(reconciler)

        first, second = client_factory.sent
        assert second.details == first.details
        assert second.image_text == first.image_text
        assert "Artist Z" in second.state and second.state != first.state

    async def test_local_start_timestamp(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        bridge.elapsed = "12.5"
        await tick(reconciler)
        assert client_factory.sent[0].start_timestamp == NOW_MS - 12_500

    async def test_incomplete_facts_send_nothing(self, reconciler, bridge, client_factory):
        bridge.facts = PlaybackFacts("Song A", "Artist X", "")
        await tick(reconciler)
        await tick(reconciler)
        assert client_factory.sent == []
        assert reconciler.session.profile is Profile.LOCAL

    async def test_failed_send_retried_next_tick(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        await reconciler.tick()
        client_factory.current.fail_send = True
        await settle(reconciler.session)
        assert client_factory.sent == []
        assert reconciler.detector.previous(Lane.LOCAL) == EMPTY

        client_factory.current.fail_send = False
        await tick(reconciler)
        assert len(client_factory.sent) == 1


class TestStopAndStart:
    async def test_playing_stopped_playing(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        await tick(reconciler)
        first = client_factory.current
        assert len(client_factory.sent) == 1

        bridge.state = "stopped"
        await tick(reconciler)
        await tick(reconciler)
        assert first.destroyed is True
        assert len(client_factory.clients) == 2  # exactly one teardown-and-recreate
        assert reconciler.session.state is SessionState.DISCONNECTED
        assert reconciler.detector.previous(Lane.LOCAL) == EMPTY

        bridge.state = "playing"
        await tick(reconciler)
        second = client_factory.current
        assert second is not first
        assert second.connect_calls == [LOCAL_ID]
        # Same song, but fingerprints were cleared, so it is sent again
        assert len(second.activities) == 1

    async def test_paused_tears_down(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        await tick(reconciler)
        bridge.state = "paused"
        await tick(reconciler)
        assert reconciler.session.state is SessionState.DISCONNECTED

    async def test_not_playing_while_disconnected_is_idle(self, reconciler, bridge, client_factory):
        bridge.state = ""
        await tick(reconciler)
        assert len(client_factory.clients) == 1
        assert client_factory.current.connect_calls == []

    async def test_failed_connect_retried_next_tick(self, reconciler, bridge, client_factory):
        bridge.facts = SONG
        client_factory.current.fail_connect = True
        await tick(reconciler)
        assert reconciler.session.state is SessionState.DISCONNECTED

        client_factory.current.fail_connect = False
        await tick(reconciler)
        assert reconciler.session.state is SessionState.CONNECTED
        assert len(client_factory.sent) == 1


class TestStationStreaming:
    async def test_station_switches_profile_then_sends(self, reconciler, bridge, client_factory,
                                                       station_http):
        fetch_text, fetch_json = station_http
        bridge.facts = STATION
        await tick(reconciler)
        # Connected with the local profile first, content needs the station profile
        assert reconciler.session.state is SessionState.DISCONNECTED
        assert reconciler.session.active_profile is Profile.STATION
        assert client_factory.sent == []

        await tick(reconciler)
        assert client_factory.current.connect_calls == [STATION_ID]
        payload, = client_factory.sent
        assert payload.start_timestamp == NOW_MS
        assert "Track Title" in payload.details
        assert "Artist Name" in payload.state
        assert "StationName" in payload.image_text
        assert payload.large_image_key == "StationName"
        assert reconciler.stations.active.station_id == "12345"

    async def test_station_resolved_once(self, reconciler, bridge, client_factory, station_http):
        fetch_text, fetch_json = station_http
        bridge.facts = STATION
        for _ in range(4):
            await tick(reconciler)
        assert fetch_text.await_count == 1
        assert fetch_json.await_count == 3
        assert len(client_factory.sent) == 1

    async def test_new_station_track_sends(self, reconciler, bridge, client_factory, station_http):
        fetch_text, fetch_json = station_http
        bridge.facts = STATION
        await tick(reconciler)
        await tick(reconciler)
        fetch_json.return_value = [{"songName": "Next", "artistName": "Someone", "albumName": "LP"}]
        await tick(reconciler)
        assert len(client_factory.sent) == 2
        assert "LP" in client_factory.sent[-1].image_text

    async def test_unresolvable_station_sends_nothing(self, reconciler, bridge, client_factory):
        bridge.facts = STATION
        with patch("music_presence.lib.stations.fetch_text", AsyncMock(return_value="<html/>")):
            await tick(reconciler)
            await tick(reconciler)
        assert client_factory.sent == []
        assert reconciler.stations.active is None
        assert reconciler.session.profile is Profile.STATION

    async def test_back_to_local_switches_profile(self, reconciler, bridge, client_factory,
                                                  station_http):
        bridge.facts = STATION
        await tick(reconciler)
        await tick(reconciler)
        assert reconciler.session.profile is Profile.STATION

        bridge.facts = SONG
        await tick(reconciler)
        assert reconciler.session.active_profile is Profile.LOCAL
        await tick(reconciler)
        assert reconciler.session.profile is Profile.LOCAL
        assert client_factory.current.connect_calls == [LOCAL_ID]
        assert "Song A" in client_factory.sent[-1].details


class TestLoop:
    async def test_run_ticks_until_stopped(self, reconciler, bridge):
        bridge.state = "stopped"
        task = asyncio.create_task(reconciler.run())
        await asyncio.sleep(0.05)
        reconciler.stop()
        await asyncio.wait_for(task, timeout=1)
        assert bridge.state_queries >= 2

    async def test_tick_errors_do_not_stop_loop(self, reconciler, bridge):
        bridge.player_state = AsyncMock(side_effect=[RuntimeError("boom")] + ["stopped"] * 100)
        task = asyncio.create_task(reconciler.run())
        await asyncio.sleep(0.05)
        reconciler.stop()
        await asyncio.wait_for(task, timeout=1)
        assert bridge.player_state.await_count >= 2

    async def test_status(self, reconciler, bridge):
        bridge.facts = SONG
        await tick(reconciler)
        status = reconciler.get_status()
        assert status["session"] == "connected"
        assert status["profile"] == "local"
        assert status["station"] is None
        assert "Artist X" in status["last_sent"]["state"]
        assert status["ticks"] == 1
