# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Helper daemon commands -> local player.

The helper only tells us *that* something happened (start, stop, change,
volume).  What actually happened is worked out by comparing Spotify's player
state with what the local player is doing.

Also owns the history workflow: when the local player runs out of a Connect
track it asks us for the next url, and we ask Spotify.  Spotify keeps
playing a context forever, so a track that comes round a second time (and
repeat is not on) means the context ended, and we pause at the end of the
current track instead.
"""

import logging
import time

from .events import LocalCommand, Origin, TrackEnding
from .history import history as default_history
from .scheduler import HISTORY
from .spotify.api import from_connect_uri, to_connect_uri
from .state import Song

log = logging.getLogger(__name__)

SEEK_THRESHOLD = 3
START_SEEK_MIN = 10


class RemoteCommandHandler:

    def __init__(self, registry, player, scheduler, api_for, history=None,
                 seek_threshold=SEEK_THRESHOLD, clock=time.time):
        self.registry = registry
        self.player = player
        self.scheduler = scheduler
        self.api_for = api_for
        self.history = history if history is not None else default_history
        self.seek_threshold = seek_threshold
        self.clock = clock

    def subscribe(self, source):
        source.subscribe(TrackEnding, self.on_track_ending)

    async def _local(self, device, action, value=None) -> bool:
        return await self.player.execute(device.id, LocalCommand(action, value, Origin.CONNECT))

    # ── Daemon commands ──

    async def handle(self, device_id: str, cmd: str, value=None, origin=Origin.REMOTE):
        device = self.registry.get(device_id)
        if device is None:
            log.warning("Connect command %s for unknown player %s", cmd, device_id)
            return
        async with device.lock:
            await self._handle(device, cmd, value, origin)

    async def _handle(self, device, cmd, value, origin):
        if device.pending_new_track:
            log.debug("Ignoring %s on %s, it's the echo of our own track change", cmd, device.id)
            device.pending_new_track = False
            return

        log.info("Got called from Connect helper for %s: %s", device.id, cmd)

        if cmd == "volume" and origin != Origin.CONNECT:
            try:
                volume = int(float(value))
            except (TypeError, ValueError):
                log.warning("Ignoring bad Connect volume for %s: %r", device.id, value)
                return
            # the player reports this back as a volume event tagged "connect"
            device.volume = volume
            await self._local(device, "volume", volume)
            return

        api = self.api_for(device)
        result = await api.player() or {}
        status = await self.player.status(device.id)
        stream_uri = to_connect_uri(status.stream_url)

        track_uri = (result.get("track") or {}).get("uri")
        progress = result.get("progress") or 0

        log.debug("Current Connect state for %s: %s", device.id, result)

        if cmd == "change" and result and (
                (stream_uri != track_uri and result.get("is_playing"))
                or not device.is_connect_active()):
            log.info("Got a change event on %s, but actually this is a new track", device.id)
            cmd = "start"

        if cmd == "start" and track_uri:
            if stream_uri != track_uri or not device.is_connect_active():
                await self._play_new_track(device, api, status, track_uri, progress)
            elif not status.is_playing:
                log.info("Resuming playback on %s", device.id)
                device.set_connect(self.clock())
                await self._local(device, "resume")

        elif cmd == "stop" and result.get("device"):
            remote = result["device"]
            remote_id = api.id_from_mac(device.id)
            is_target = bool(remote_id and remote.get("id") == remote_id) \
                or remote.get("name") == device.name

            if status.is_playing and is_target and device.is_connect_active():
                log.info("Spotify told %s to pause", device.id)
            elif status.is_playing:
                log.info("Spotify told us to pause, but %s is not the Connect target", device.id)
                device.reset_connect()

            await self._local(device, "pause")

        elif cmd == "change":
            # clocks are never perfectly aligned, only correct real drift
            if status.is_playing and abs(progress - status.elapsed) > self.seek_threshold:
                log.info("Seeking %s to %.1fs (local %.1fs)", device.id, progress, status.elapsed)
                await self._local(device, "seek", progress)

        else:
            log.info("Unknown or empty Connect command on %s: %s %s", device.id, cmd, result)

    async def _play_new_track(self, device, api, status, track_uri, progress):
        log.info("Got a new track to be played on %s: %s", device.id, track_uri)

        # sync volume up to Spotify if we just got connected
        if not device.connect_mode:
            volume = status.volume if status.volume is not None else device.volume
            if volume is not None:
                await api.player_volume(device.id, volume)

        device.connect_mode = True
        device.pending_new_track = True

        url = from_connect_uri(track_uri)
        device.upcoming = Song(url, connect_started_at=self.clock())
        await self._local(device, "play", url)

        # new listening context; not really one, but better than nothing
        self.history.clear()

        if progress > START_SEEK_MIN:
            await self._local(device, "seek", progress)

    # ── History workflow ──

    async def on_track_ending(self, event: TrackEnding):
        """Return the url the local player should play next, or None."""
        device = self.registry.get(event.device_id)
        if device is None:
            return None
        async with device.lock:
            return await self._next_track(device, event.url)

    async def _next_track(self, device, url):
        if device.pending_new_track:
            log.info("Not asking for the next track on %s, we started this one ourselves", device.id)
            device.set_connect(self.clock())
            device.pending_new_track = False
            return device.upcoming.url if device.upcoming else None

        log.info("Approaching the end of a track on %s — get the next track", device.id)
        device.pending_new_track = True
        self.history.increment(url)

        api = self.api_for(device)
        await api.player_next()
        result = await api.player()
        uri = ((result or {}).get("track") or {}).get("uri")
        if not uri:
            return None

        log.info("Got a new track to be played next on %s: %s", device.id, uri)
        next_url = from_connect_uri(uri)

        if self.history.count(next_url) and result.get("repeat_state") != "on":
            status = await self.player.status(device.id)
            remaining = self._remaining(device, status)
            if remaining is None:
                log.warning("End of the context on %s, but the track length is unknown; "
                            "not scheduling a pause", device.id)
                return None
            log.info("Stopping %s in %.1fs, we have likely reached the end of the context",
                     device.id, remaining)
            self.scheduler.schedule(
                (device.id, HISTORY), remaining, self._end_of_context, device.id)
            return None

        device.upcoming = Song(next_url, result.get("duration") or None,
                               connect_started_at=self.clock())
        device.connect_mode = True
        return next_url

    @staticmethod
    def _remaining(device, status):
        """Seconds left in the current track, or None if its length is unknown."""
        if status.duration:
            return status.remaining
        if device.song and device.song.duration:
            return max(0.0, device.song.duration - status.elapsed)
        return None

    async def _end_of_context(self, device_id):
        device = self.registry.get(device_id)
        if device is None:
            return
        async with device.lock:
            log.info("End of Connect context on %s — pausing", device_id)
            await self._local(device, "pause")
            await self.api_for(device).player_pause(device_id)
