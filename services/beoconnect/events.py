# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Local playback events and commands.

The player service posts its events to beo-connect's ``/event`` webhook; they
are parsed into the typed variants below and routed by ``PlaybackEventSource``.
Every command we send back to the player carries an ``Origin`` so that the
events it causes can be recognised and ignored.
"""

import enum
import logging
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


class Origin(str, enum.Enum):
    CONNECT = "connect"   # issued by this bridge
    LOCAL = "local"       # user / UI / remote control at the device
    REMOTE = "remote"     # pushed by the helper daemon


def parse_origin(value) -> Origin:
    try:
        return Origin(value) if value else Origin.LOCAL
    except ValueError:
        return Origin.LOCAL


@dataclass
class PlaybackEvent:
    device_id: str
    origin: Origin = field(default=Origin.LOCAL, kw_only=True)

    @property
    def from_bridge(self) -> bool:
        return self.origin == Origin.CONNECT


@dataclass
class TrackStarted(PlaybackEvent):
    url: str
    duration: float | None = None


@dataclass
class TrackEnding(PlaybackEvent):
    """The engine is about to run out of the current track and wants the next url."""
    url: str


@dataclass
class Paused(PlaybackEvent):
    pass


@dataclass
class Stopped(PlaybackEvent):
    pass


@dataclass
class VolumeChanged(PlaybackEvent):
    volume: int


@dataclass
class DeviceConnected(PlaybackEvent):
    name: str = ""


@dataclass
class DeviceDisconnected(PlaybackEvent):
    pass


_EVENT_TYPES = {
    "track_started": TrackStarted,
    "track_ending": TrackEnding,
    "pause": Paused,
    "stop": Stopped,
    "volume": VolumeChanged,
    "connect": DeviceConnected,
    "disconnect": DeviceDisconnected,
}


def event_from_dict(data: dict) -> PlaybackEvent:
    """Build an event from the webhook JSON body.

    {"type": "track_started", "device": "00:04:20:aa:bb:cc",
     "url": "spotify://track:...", "duration": 215.3, "origin": "local"}
    """
    kind = data.get("type", "")
    cls = _EVENT_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown event type: {kind}")
    device_id = data.get("device")
    if not device_id:
        raise ValueError("Missing device")
    origin = parse_origin(data.get("origin"))

    if cls in (TrackStarted, TrackEnding):
        url = data.get("url")
        if not url:
            raise ValueError(f"{kind} needs a url")
        if cls is TrackStarted:
            return TrackStarted(device_id, url, data.get("duration"), origin=origin)
        return TrackEnding(device_id, url, origin=origin)
    if cls is VolumeChanged:
        return VolumeChanged(device_id, int(data["volume"]), origin=origin)
    if cls is DeviceConnected:
        return DeviceConnected(device_id, data.get("name") or device_id, origin=origin)
    return cls(device_id, origin=origin)


@dataclass
class LocalCommand:
    """A command for the local player.  ``action`` is play|pause|resume|seek|volume."""
    action: str
    value: object = None
    origin: Origin = Origin.CONNECT

    def to_dict(self) -> dict:
        body = {"origin": self.origin.value}
        if self.action == "play":
            body["url"] = self.value
        elif self.action == "seek":
            body["position"] = self.value
        elif self.action == "volume":
            body["volume"] = self.value
        return body


class PlaybackEventSource:
    """Routes typed playback events to subscribed handlers, in subscription order."""

    def __init__(self):
        self._handlers: dict[type, list] = {}

    def subscribe(self, event_type: type, handler):
        self._handlers.setdefault(event_type, []).append(handler)

    async def dispatch(self, event: PlaybackEvent):
        """Run every handler for *event*; returns the last non-None result."""
        result = None
        for handler in self._handlers.get(type(event), []):
            try:
                value = await handler(event)
            except Exception:
                log.exception("Handler %s failed for %s", getattr(handler, "__name__", handler), event)
                continue
            if value is not None:
                result = value
        return result
