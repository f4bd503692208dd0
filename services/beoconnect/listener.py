# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Local player events -> Spotify.

Tells the Connect controller when we pause, stop, change volume or leave
Connect mode locally.  Events caused by our own commands (origin "connect")
only update bookkeeping, never reach Spotify, otherwise every remote command
would bounce straight back.
"""

import logging
import time

from .config import device_settings
from .events import (
    DeviceConnected, DeviceDisconnected, Paused, Stopped, TrackStarted, VolumeChanged,
)
from .scheduler import VOLUME
from .spotify import api as spotify_api
from .state import Device

log = logging.getLogger(__name__)

VOLUME_DEBOUNCE = 0.5
STOP_GRACE = 5


class LocalEventListener:

    def __init__(self, registry, scheduler, api_for, helpers,
                 volume_delay=VOLUME_DEBOUNCE, stop_grace=STOP_GRACE, clock=time.time):
        self.registry = registry
        self.scheduler = scheduler
        self.api_for = api_for
        self.helpers = helpers
        self.volume_delay = volume_delay
        self.stop_grace = stop_grace
        self.clock = clock

    def subscribe(self, source):
        source.subscribe(TrackStarted, self.on_track_started)
        source.subscribe(Paused, self.on_pause)
        source.subscribe(Stopped, self.on_pause)
        source.subscribe(VolumeChanged, self.on_volume)
        source.subscribe(DeviceConnected, self.on_device_connected)
        source.subscribe(DeviceDisconnected, self.on_device_disconnected)

    async def on_track_started(self, event: TrackStarted):
        device = self.registry.get(event.device_id)
        if device is None:
            return

        async with device.lock:
            song = device.start_song(event.url, event.duration)

            if event.from_bridge:
                if device.connect_mode and not song.is_connect:
                    song.mark_connect(self.clock())
                return

            if device.is_connect_active() or not device.connect_mode:
                return

            log.info("New track on %s, but this is no longer Spotify Connect", device.id)
            device.reset_connect()
            await self.api_for(device).player_pause(device.id)

    async def on_pause(self, event):
        if event.from_bridge:
            return
        device = self.registry.get(event.device_id)
        if device is None:
            return

        async with device.lock:
            if not device.is_connect_active():
                return

            started = device.song.connect_started_at if device.song else None
            if isinstance(event, Stopped) and started and started > self.clock() - self.stop_grace:
                log.info("Stop on %s within %ds of a new Connect track — not telling Spotify",
                         device.id, self.stop_grace)
                return

            log.info("Pause on %s — tell the Connect controller to pause, too", device.id)
            await self.api_for(device).player_pause(device.id)

    async def on_volume(self, event: VolumeChanged):
        device = self.registry.get(event.device_id)
        if device is None:
            return
        device.volume = event.volume

        if event.from_bridge or not device.is_connect_active():
            return

        # volume changes come in bursts, only the last one matters
        self.scheduler.schedule(
            (device.id, VOLUME), self.volume_delay,
            self._push_volume, device.id, event.volume)

    async def _push_volume(self, device_id, volume):
        device = self.registry.get(device_id)
        if device is None:
            return
        log.info("Volume on %s — tell the Connect controller: %s", device_id, volume)
        await self.api_for(device).player_volume(device_id, volume)

    async def on_device_connected(self, event: DeviceConnected):
        settings = device_settings(event.device_id)
        device = self.registry.add(Device(
            event.device_id,
            settings["name"] or event.name or event.device_id,
            enabled=settings["enabled"],
            account=settings["account"],
        ))
        spotify_api.register_device(device.id, device.name, device.account)
        log.info("Player %s (%s) connected", device.id, device.name)
        await self.helpers.init_helpers()

    async def on_device_disconnected(self, event: DeviceDisconnected):
        self.scheduler.cancel_device(event.device_id)
        self.helpers.stop_helper(event.device_id)
        if self.registry.remove(event.device_id):
            log.info("Player %s disconnected", event.device_id)
        spotify_api.forget_device(event.device_id)
