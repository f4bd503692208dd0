# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Client for the local player service.

Commands go to ``POST {player_url}/{device}/{action}`` with a JSON body that
always includes ``origin``; the player echoes that origin on the events the
command causes.  Status comes from ``GET {player_url}/{device}/status``.
"""

import logging
from dataclasses import dataclass

import aiohttp

from .config import cfg
from .events import LocalCommand

log = logging.getLogger(__name__)

PLAYER_URL = "http://localhost:8766/player"


@dataclass
class PlayerStatus:
    is_playing: bool = False
    stream_url: str = ""
    elapsed: float = 0.0
    duration: float | None = None
    volume: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "PlayerStatus":
        return cls(
            is_playing=data.get("state") == "playing",
            stream_url=data.get("url") or "",
            elapsed=float(data.get("elapsed") or 0),
            duration=data.get("duration"),
            volume=data.get("volume"),
        )

    @property
    def remaining(self) -> float:
        if not self.duration:
            return 0.0
        return max(0.0, self.duration - self.elapsed)


class LocalPlayer:

    def __init__(self, session: aiohttp.ClientSession | None = None, base_url: str | None = None):
        self.session = session
        self.base_url = base_url or cfg("connect", "player_url", default=PLAYER_URL)

    async def execute(self, device_id: str, command: LocalCommand) -> bool:
        """POST a command to the player service, return True on success."""
        try:
            async with self.session.post(
                f"{self.base_url}/{device_id}/{command.action}",
                json=command.to_dict(),
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                if resp.status == 200:
                    data = await resp.json()
                    return data.get("status") == "ok"
                log.warning("Player %s for %s returned HTTP %d",
                            command.action, device_id, resp.status)
                return False
        except Exception as e:
            log.warning("Player %s for %s failed: %s", command.action, device_id, e)
            return False

    async def status(self, device_id: str) -> PlayerStatus:
        """Current local playback status; an empty status if the player is unreachable."""
        try:
            async with self.session.get(
                f"{self.base_url}/{device_id}/status",
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                if resp.status == 200:
                    return PlayerStatus.from_dict(await resp.json())
                return PlayerStatus()
        except Exception as e:
            log.warning("Player status for %s failed: %s", device_id, e)
            return PlayerStatus()
