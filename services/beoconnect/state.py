# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Connect state model.

Device-level flags say "we have been playing from Connect", song-level flags
say "this particular song is part of that session".  A device whose flag is
set but whose current song is not flagged has left Connect mode locally.

Only the listener and the remote handler mutate these objects, both from the
event loop, one device at a time (see ``Device.lock``).
"""

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class Song:
    url: str
    duration: float | None = None
    connect_started_at: float | None = None

    @property
    def is_connect(self) -> bool:
        return self.connect_started_at is not None

    def mark_connect(self, now: float | None = None):
        self.connect_started_at = time.time() if now is None else now

    def clear_connect(self):
        self.connect_started_at = None


@dataclass
class Device:
    id: str
    name: str
    enabled: bool = False
    account: str = "default"

    connect_mode: bool = False
    pending_new_track: bool = False
    song: Song | None = None
    upcoming: Song | None = None
    volume: int | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def is_connect_active(self) -> bool:
        """True while local playback mirrors the remote session."""
        if not self.connect_mode:
            return False
        return self.pending_new_track or bool(self.song and self.song.is_connect)

    def set_connect(self, now: float | None = None):
        if self.song:
            self.song.mark_connect(now)
        self.connect_mode = True

    def reset_connect(self):
        if self.song:
            self.song.clear_connect()
        self.connect_mode = False

    def start_song(self, url: str, duration: float | None = None) -> Song:
        """Make *url* the current song, adopting the prepared upcoming song if it matches."""
        if self.upcoming and self.upcoming.url == url:
            song = self.upcoming
            if duration is not None:
                song.duration = duration
        else:
            song = Song(url, duration)
        self.upcoming = None
        self.song = song
        return song

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "account": self.account,
            "connect": self.is_connect_active(),
            "pending_new_track": self.pending_new_track,
            "song": self.song.url if self.song else None,
        }


class DeviceRegistry:
    """Keyed table of the devices currently known to the local engine."""

    def __init__(self):
        self._devices: dict[str, Device] = {}

    def add(self, device: Device) -> Device:
        existing = self._devices.get(device.id)
        if existing:
            existing.name = device.name
            return existing
        self._devices[device.id] = device
        return device

    def remove(self, device_id: str) -> Device | None:
        return self._devices.pop(device_id, None)

    def get(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def ids(self) -> set[str]:
        return set(self._devices)

    def __iter__(self):
        return iter(list(self._devices.values()))

    def __contains__(self, device_id: str):
        return device_id in self._devices

    def __len__(self):
        return len(self._devices)
