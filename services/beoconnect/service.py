#!/usr/bin/env python3
# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
BeoSound 5c Spotify Connect bridge (beo-connect)

Keeps the local player and a Spotify Connect session in sync, and runs one
Connect helper daemon per enabled player.

Routes:
  POST /connect/{device}/{cmd}      helper daemon callbacks (start|stop|change|volume)
  POST /event                       local player events (see events.event_from_dict)
  POST /devices/{device}/settings   {"enabled": bool, "account": str}
  GET  /status

Port: 8773
"""

import asyncio
import logging
import signal

import aiohttp
from aiohttp import web

from .config import cfg
from .events import Origin, PlaybackEventSource, TrackEnding, event_from_dict, parse_origin
from .helpers import HelperManager
from .listener import LocalEventListener
from .local_player import LocalPlayer
from .remote import RemoteCommandHandler
from .scheduler import TaskScheduler
from .sdnotify import heartbeat_loop, sd_notify
from .spotify import api as spotify_api
from .spotify import ConnectAPI, SpotifyAuth
from .state import DeviceRegistry

log = logging.getLogger(__name__)

CONNECT_PORT = 8773


class ConnectService:

    def __init__(self, player=None, api_factory=None, spawner=None):
        self.port = cfg("connect", "port", default=CONNECT_PORT)
        self.registry = DeviceRegistry()
        self.scheduler = TaskScheduler()
        self.events = PlaybackEventSource()
        self._http_session: aiohttp.ClientSession | None = None
        self._runner: web.AppRunner | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._api_factory = api_factory
        self._apis: dict[str, object] = {}

        self.player = player or LocalPlayer()
        self.helpers = HelperManager(self.registry, self.scheduler, self.api_for, spawner)
        self.listener = LocalEventListener(self.registry, self.scheduler, self.api_for, self.helpers)
        self.remote = RemoteCommandHandler(self.registry, self.player, self.scheduler, self.api_for)
        self.listener.subscribe(self.events)
        self.remote.subscribe(self.events)

    def api_for(self, device):
        """Web API client for the device's account (one per account)."""
        api = self._apis.get(device.account)
        if api is None:
            if self._api_factory:
                api = self._api_factory(device.account)
            else:
                api = ConnectAPI(self._http_session, SpotifyAuth(device.account))
            self._apis[device.account] = api
        return api

    # ── Settings hooks ──

    async def set_connect_enabled(self, device_id: str, enabled: bool):
        device = self.registry.get(device_id)
        if device is None or device.enabled == enabled:
            return
        log.info("Spotify Connect %s for %s", "enabled" if enabled else "disabled", device_id)
        device.enabled = enabled
        if not enabled:
            self.scheduler.cancel_device(device_id)
            device.reset_connect()
        await self.helpers.init_helpers()

    async def set_account(self, device_id: str, account: str):
        device = self.registry.get(device_id)
        if device is None or not account or device.account == account:
            return
        log.info("Spotify account for player %s has changed — re-initialize Connect helper",
                 device_id)
        device.account = account
        device.reset_connect()
        spotify_api.forget_device(device_id)
        spotify_api.register_device(device_id, device.name, account)
        self.scheduler.cancel_device(device_id)
        self.helpers.stop_helper(device_id)
        await self.helpers.init_helpers()

    async def init_connect(self):
        """Check the helper once, then start the watchdog if it is usable."""
        if not await self.helpers.check_helper_version():
            log.error("Spotify Connect disabled, no helper daemons will be started")
            return
        await self.helpers.init_helpers()

    # ── HTTP ──

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/connect/{device_id}/{cmd}", self._handle_connect)
        app.router.add_post("/event", self._handle_event)
        app.router.add_post("/devices/{device_id}/settings", self._handle_settings)
        app.router.add_get("/status", self._handle_status)
        app.router.add_options("/event", self._handle_cors)
        return app

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    def _error(self, message, status=400):
        return web.json_response(
            {"status": "error", "message": message},
            status=status, headers=self._cors_headers())

    async def _json_body(self, request) -> dict:
        if not request.can_read_body:
            return {}
        try:
            data = await request.json()
        except Exception:
            return {}
        return data if isinstance(data, dict) else {}

    async def _handle_connect(self, request):
        device_id = request.match_info["device_id"]
        cmd = request.match_info["cmd"]
        if device_id not in self.registry:
            return self._error(f"Unknown player: {device_id}", 404)

        data = await self._json_body(request)
        value = data.get("value", request.query.get("value"))
        origin = parse_origin(data.get("origin") or request.query.get("origin") or Origin.REMOTE.value)
        try:
            await self.remote.handle(device_id, cmd, value, origin)
        except Exception as e:
            log.exception("Connect command error")
            return self._error(str(e), 500)
        return web.json_response({"status": "ok", "command": cmd}, headers=self._cors_headers())

    async def _handle_event(self, request):
        data = await self._json_body(request)
        try:
            event = event_from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            return self._error(str(e))

        result = await self.events.dispatch(event)
        resp = {"status": "ok"}
        if isinstance(event, TrackEnding):
            resp["next_url"] = result
        return web.json_response(resp, headers=self._cors_headers())

    async def _handle_settings(self, request):
        device_id = request.match_info["device_id"]
        if device_id not in self.registry:
            return self._error(f"Unknown player: {device_id}", 404)
        data = await self._json_body(request)
        if "account" in data:
            await self.set_account(device_id, str(data["account"]))
        if "enabled" in data:
            await self.set_connect_enabled(device_id, bool(data["enabled"]))
        return web.json_response(
            {"status": "ok", "device": self.registry.get(device_id).to_dict()},
            headers=self._cors_headers())

    async def _handle_status(self, request):
        return web.json_response(self.status(), headers=self._cors_headers())

    def status(self) -> dict:
        devices = []
        for device in self.registry:
            info = device.to_dict()
            handle = self.helpers.handle(device.id)
            info["helper"] = {"running": self.helpers.is_running(device.id),
                              "pid": handle.pid if handle else None}
            info["remote_id"] = spotify_api.id_from_mac(device.id)
            devices.append(info)
        return {"devices": devices, "scheduled": [list(k) for k in self.scheduler.keys()]}

    # ── Lifecycle ──

    async def start(self):
        self._http_session = aiohttp.ClientSession()
        if isinstance(self.player, LocalPlayer) and self.player.session is None:
            self.player.session = self._http_session

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, "0.0.0.0", self.port)
        await site.start()
        log.info("HTTP API on port %d", self.port)

        await self.init_connect()
        self._heartbeat_task = asyncio.create_task(heartbeat_loop(
            lambda: f"{sum(self.helpers.is_running(d.id) for d in self.registry)} helper(s) running"))

    async def stop(self):
        sd_notify("STOPPING=1")
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        self.scheduler.cancel_all()
        await self.helpers.close()
        if self._http_session:
            await self._http_session.close()
            self._http_session = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def run(self):
        """Start, wait for SIGTERM/SIGINT, stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.stop()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    asyncio.run(ConnectService().run())


if __name__ == "__main__":
    main()
