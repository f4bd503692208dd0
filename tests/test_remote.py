"""Tests for helper daemon commands -> local player, and the history workflow."""

import asyncio
import logging

import pytest

from beoconnect.events import Origin, TrackEnding
from beoconnect.local_player import PlayerStatus
from beoconnect.remote import RemoteCommandHandler

from conftest import connect_active

NOW = 1000.0
A = "spotify:track:A"
B = "spotify:track:B"


def remote_state(uri=A, progress=0, is_playing=True, device_id="spotify-dev-1",
                 name="Kitchen", repeat="off", duration=200.0):
    return {
        "track": {"uri": uri},
        "duration": duration,
        "is_playing": is_playing,
        "progress": progress,
        "device": {"id": device_id, "name": name, "volume_percent": 50},
        "repeat_state": repeat,
    }


@pytest.fixture
def handler(registry, player, scheduler, api, history):
    return RemoteCommandHandler(registry, player, scheduler, lambda device: api,
                                history=history, clock=lambda: NOW)


class TestEchoAndVolume:

    @pytest.mark.asyncio
    async def test_pending_new_track_swallows_one_command(self, handler, device, api, player):
        device.pending_new_track = True
        await handler.handle("aa:bb", "change")
        assert not device.pending_new_track
        assert api.calls == []
        assert player.commands == []

    @pytest.mark.asyncio
    async def test_volume_goes_to_local_mixer_tagged(self, handler, device, api, player):
        await handler.handle("aa:bb", "volume", "35")
        assert player.actions() == [("volume", 35)]
        assert player.commands[0][1].origin == Origin.CONNECT
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_fractional_volume_is_truncated(self, handler, device, player):
        await handler.handle("aa:bb", "volume", "35.5")
        assert player.actions() == [("volume", 35)]
        assert device.volume == 35

    @pytest.mark.asyncio
    async def test_garbage_volume_is_logged_and_dropped(self, handler, device, player, caplog):
        await handler.handle("aa:bb", "volume", "loud")
        assert player.commands == []
        assert "bad Connect volume" in caplog.text

    @pytest.mark.asyncio
    async def test_bridge_volume_is_not_reissued(self, handler, device, api, player):
        api.state = remote_state()
        await handler.handle("aa:bb", "volume", "35", origin=Origin.CONNECT)
        assert ("volume", 35) not in player.actions()

    @pytest.mark.asyncio
    async def test_unknown_device_is_ignored(self, handler, api, player):
        await handler.handle("zz:zz", "start")
        assert api.calls == []


class TestStart:

    @pytest.mark.asyncio
    async def test_new_track_plays_and_resets_history(self, handler, device, api, player, history):
        history.increment("spotify://track:X")
        api.state = remote_state(progress=3)
        player.statuses["aa:bb"] = PlayerStatus(volume=42)

        await handler.handle("aa:bb", "start")

        assert player.actions() == [("play", "spotify://track:A")]
        assert all(c.origin == Origin.CONNECT for _, c in player.commands)
        assert device.connect_mode and device.pending_new_track
        assert device.upcoming.url == "spotify://track:A"
        assert api.called("volume") == [("volume", "aa:bb", 42)]
        assert len(history) == 0

    @pytest.mark.asyncio
    async def test_new_track_seeks_when_far_in(self, handler, device, api, player):
        api.state = remote_state(progress=95.5)
        await handler.handle("aa:bb", "start")
        assert player.actions() == [("play", "spotify://track:A"), ("seek", 95.5)]

    @pytest.mark.asyncio
    async def test_volume_not_pushed_when_already_connected(self, handler, device, api, player):
        connect_active(device, url="spotify://track:A")
        api.state = remote_state(uri=B)
        player.statuses["aa:bb"] = PlayerStatus(is_playing=True, stream_url="spotify://track:A", volume=42)
        await handler.handle("aa:bb", "start")
        assert api.called("volume") == []
        assert player.actions() == [("play", "spotify://track:B")]

    @pytest.mark.asyncio
    async def test_same_track_paused_resumes_not_replays(self, handler, device, api, player):
        connect_active(device, url="spotify://track:A")
        api.state = remote_state(uri=A, progress=60)
        player.statuses["aa:bb"] = PlayerStatus(is_playing=False, stream_url="spotify://track:A", elapsed=60)

        await handler.handle("aa:bb", "start")

        assert player.actions() == [("resume", None)]
        assert not device.pending_new_track

    @pytest.mark.asyncio
    async def test_no_remote_state_is_a_noop(self, handler, device, api, player):
        api.state = None
        await handler.handle("aa:bb", "start")
        assert player.commands == []
        assert not device.connect_mode


class TestChange:

    def _playing(self, device, player, elapsed):
        connect_active(device, url="spotify://track:A")
        player.statuses["aa:bb"] = PlayerStatus(
            is_playing=True, stream_url="spotify://track:A", elapsed=elapsed)

    @pytest.mark.asyncio
    async def test_small_drift_ignored(self, handler, device, api, player):
        self._playing(device, player, 40)
        api.state = remote_state(progress=41)
        await handler.handle("aa:bb", "change")
        assert player.commands == []

    @pytest.mark.asyncio
    async def test_large_drift_seeks(self, handler, device, api, player):
        self._playing(device, player, 40)
        api.state = remote_state(progress=50)
        await handler.handle("aa:bb", "change")
        assert player.actions() == [("seek", 50)]
        assert player.commands[0][1].origin == Origin.CONNECT

    @pytest.mark.asyncio
    async def test_change_to_other_track_becomes_start(self, handler, device, api, player):
        self._playing(device, player, 40)
        api.state = remote_state(uri=B, progress=1)
        await handler.handle("aa:bb", "change")
        assert player.actions() == [("play", "spotify://track:B")]

    @pytest.mark.asyncio
    async def test_change_while_not_connected_becomes_start(self, handler, device, api, player):
        api.state = remote_state(uri=A, is_playing=False)
        await handler.handle("aa:bb", "change")
        assert player.actions() == [("play", "spotify://track:A")]


class TestStop:

    @pytest.mark.asyncio
    async def test_stop_for_us_pauses(self, handler, device, api, player):
        connect_active(device, url="spotify://track:A")
        api.remote_ids["aa:bb"] = "spotify-dev-1"
        api.state = remote_state(device_id="spotify-dev-1", name="Other name")
        player.statuses["aa:bb"] = PlayerStatus(is_playing=True, stream_url="spotify://track:A")

        await handler.handle("aa:bb", "stop")

        assert player.actions() == [("pause", None)]
        assert device.connect_mode

    @pytest.mark.asyncio
    async def test_other_device_took_over(self, handler, device, api, player):
        connect_active(device, url="spotify://track:A")
        api.remote_ids["aa:bb"] = "spotify-dev-1"
        api.state = remote_state(device_id="phone", name="My Phone")
        player.statuses["aa:bb"] = PlayerStatus(is_playing=True, stream_url="spotify://track:A")

        await handler.handle("aa:bb", "stop")

        assert not device.connect_mode
        assert not device.song.is_connect
        assert player.actions() == [("pause", None)]

    @pytest.mark.asyncio
    async def test_unknown_command_logged_only(self, handler, device, api, player, caplog):
        caplog.set_level(logging.INFO)
        connect_active(device)
        api.state = remote_state()
        await handler.handle("aa:bb", "shuffle")
        assert player.commands == []
        assert device.connect_mode
        assert "shuffle" in caplog.text


class TestHistory:

    @pytest.mark.asyncio
    async def test_next_track_is_prepared(self, handler, device, api, history):
        connect_active(device, url="spotify://track:A")
        api.next_state = remote_state(uri=B, duration=180.0)

        next_url = await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:A"))

        assert next_url == "spotify://track:B"
        assert history.count("spotify://track:A") == 1
        assert device.upcoming.url == "spotify://track:B"
        assert device.upcoming.is_connect
        assert device.pending_new_track
        assert api.called("next")

    @pytest.mark.asyncio
    async def test_own_track_change_hands_over_prepared_track(self, handler, device, api):
        from beoconnect.state import Song
        connect_active(device)
        device.pending_new_track = True
        device.upcoming = Song("spotify://track:B")
        next_url = await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:A"))
        assert next_url == "spotify://track:B"
        assert not device.pending_new_track
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_own_track_change_never_replays_ending_track(self, handler, device, api):
        connect_active(device)
        device.pending_new_track = True
        next_url = await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:A"))
        assert next_url is None
        assert not device.pending_new_track
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_loop_back_schedules_pause_at_end(
            self, handler, device, api, player, scheduler, history):
        # A -> B -> A with repeat off
        connect_active(device, url="spotify://track:A")
        api.next_state = remote_state(uri=B)
        assert await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:A"))

        await handler.handle("aa:bb", "change")  # echo of our own skip
        device.start_song("spotify://track:B", 200.0)

        api.next_state = remote_state(uri=A)
        player.statuses["aa:bb"] = PlayerStatus(
            is_playing=True, stream_url="spotify://track:B", elapsed=199.95, duration=200.0)

        next_url = await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:B"))

        assert next_url is None
        assert scheduler.pending(("aa:bb", "history"))
        assert player.commands == []

        await asyncio.sleep(0.1)
        assert player.actions() == [("pause", None)]
        assert player.commands[0][1].origin == Origin.CONNECT
        assert ("pause", "aa:bb") in api.calls

    @pytest.mark.asyncio
    async def test_repeat_on_keeps_playing(self, handler, device, api, scheduler, history):
        connect_active(device, url="spotify://track:B")
        history.increment("spotify://track:A")
        api.next_state = remote_state(uri=A, repeat="on")

        next_url = await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:B"))

        assert next_url == "spotify://track:A"
        assert not scheduler.pending(("aa:bb", "history"))

    @pytest.mark.asyncio
    async def test_end_of_context_uses_song_length_when_player_has_none(
            self, handler, device, api, player, scheduler, history):
        connect_active(device, url="spotify://track:B")  # 200s long
        history.increment("spotify://track:A")
        api.next_state = remote_state(uri=A)
        player.statuses["aa:bb"] = PlayerStatus(
            is_playing=True, stream_url="spotify://track:B", elapsed=20)

        assert await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:B")) is None

        assert scheduler.pending(("aa:bb", "history"))
        await asyncio.sleep(0.05)
        assert player.commands == []
        assert ("pause", "aa:bb") not in api.calls

    @pytest.mark.asyncio
    async def test_end_of_context_with_unknown_length_does_not_pause(
            self, handler, device, api, player, scheduler, history):
        connect_active(device, url="spotify://track:B")
        device.song.duration = None
        history.increment("spotify://track:A")
        api.next_state = remote_state(uri=A)

        assert await handler.on_track_ending(TrackEnding("aa:bb", "spotify://track:B")) is None

        assert not scheduler.pending(("aa:bb", "history"))
        await asyncio.sleep(0.05)
        assert player.commands == []
        assert ("pause", "aa:bb") not in api.calls
