# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Spotify Web API calls used by the Connect bridge.

Only the player endpoints are needed.  All methods degrade to None / False /
[] on any HTTP or auth failure; the caller treats that as "nothing to do".

Remote device ids are not derived from our player ids.  The helper daemon
announces itself under the player's display name, so ``devices()`` matches
names registered via ``register_device()`` and caches the player id -> remote
id mapping for ``id_from_mac()``.
"""

import logging
import re

import aiohttp

from .auth import SpotifyAuth

log = logging.getLogger(__name__)

API_BASE = "https://api.spotify.com/v1/me/player"

# player id -> (display name, account) / remote Spotify device id
_device_names: dict[str, tuple[str, str]] = {}
_remote_ids: dict[str, str] = {}


def to_connect_uri(url: str) -> str:
    """Local stream url -> Connect uri: spotify://track:x -> spotify:track:x"""
    return re.sub(r"^spotify://", "spotify:", url or "")


def from_connect_uri(uri: str) -> str:
    """Connect uri -> local stream url: spotify:track:x -> spotify://track:x"""
    return re.sub(r"^(spotify:)(track:.*)", r"\1//\2", uri or "")


def register_device(device_id: str, name: str, account: str = "default"):
    _device_names[device_id] = (name, account)


def forget_device(device_id: str):
    _device_names.pop(device_id, None)
    _remote_ids.pop(device_id, None)


def id_from_mac(device_id: str) -> str | None:
    """Remote device id for a local player, if Spotify has reported it."""
    return _remote_ids.get(device_id)


class ConnectAPI:
    """Player endpoints of the Web API for one account."""

    def __init__(self, session: aiohttp.ClientSession, auth: SpotifyAuth, base_url: str = API_BASE):
        self._session = session
        self.auth = auth
        self.base_url = base_url

    id_from_mac = staticmethod(id_from_mac)

    async def _request(self, method, path="", params=None):
        """Returns (status, json-or-None); (0, None) when the request failed."""
        try:
            token = await self.auth.get_token()
        except Exception as e:
            log.warning("No access token for %s: %s", self.auth.account, e)
            return 0, None
        try:
            async with self._session.request(
                method, f"{self.base_url}{path}",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                if resp.status == 204:
                    return resp.status, None
                if resp.status >= 400:
                    log.warning("Spotify %s %s -> HTTP %d", method, path or "/", resp.status)
                    return resp.status, None
                if resp.content_type == "application/json":
                    return resp.status, await resp.json()
                return resp.status, None
        except Exception as e:
            log.warning("Spotify %s %s failed: %s", method, path or "/", e)
            return 0, None

    def _device_params(self, device_id, **params):
        remote_id = id_from_mac(device_id) if device_id else None
        if remote_id:
            params["device_id"] = remote_id
        return params

    async def player(self) -> dict | None:
        """Current playback state, normalised; None when nothing is playing."""
        status, data = await self._request("GET")
        if not data:
            return None
        item = data.get("item") or {}
        device = data.get("device") or {}
        return {
            "track": {"uri": item.get("uri")} if item.get("uri") else None,
            "duration": (item.get("duration_ms") or 0) / 1000,
            "is_playing": bool(data.get("is_playing")),
            "progress": (data.get("progress_ms") or 0) / 1000,
            "device": {
                "id": device.get("id"),
                "name": device.get("name"),
                "volume_percent": device.get("volume_percent"),
            } if device else None,
            "repeat_state": data.get("repeat_state"),
        }

    async def player_next(self) -> bool:
        status, _ = await self._request("POST", "/next")
        return 200 <= status < 300

    async def player_pause(self, device_id=None) -> bool:
        status, _ = await self._request("PUT", "/pause", self._device_params(device_id))
        return 200 <= status < 300

    async def player_volume(self, device_id, volume) -> bool:
        params = self._device_params(device_id, volume_percent=max(0, min(100, int(volume))))
        status, _ = await self._request("PUT", "/volume", params)
        return 200 <= status < 300

    async def devices(self) -> list:
        """List Connect devices and refresh the player id -> remote id cache."""
        status, data = await self._request("GET", "/devices")
        devices = (data or {}).get("devices") or []
        by_name = {d.get("name"): d.get("id") for d in devices if d.get("id")}
        for device_id, (name, account) in _device_names.items():
            if account != self.auth.account:
                continue
            if name in by_name:
                if _remote_ids.get(device_id) != by_name[name]:
                    log.info("Connect device %s is known to Spotify as %s", device_id, by_name[name])
                _remote_ids[device_id] = by_name[name]
            elif status == 200 and _remote_ids.pop(device_id, None):
                log.info("Connect device %s no longer listed by Spotify", device_id)
        return devices
