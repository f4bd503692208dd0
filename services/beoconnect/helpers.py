# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Connect helper daemons, one per player.

The helper (spotty) keeps the actual Spotify Connect session and calls back
into beo-connect's ``/connect/{device}/{cmd}`` route.  We own the process
handles: at most one per player id.

The watchdog pass (``init_helpers``) runs once and then reschedules itself
60s after it finished, so passes never overlap.  Players sometimes vanish
from Spotify's device list without the helper crashing, so a helper whose
player Spotify does not list is restarted too, followed by a delayed device
list query to pick up the new remote id.
"""

import asyncio
import logging
import os
import re
import subprocess

from .config import cfg
from .scheduler import RECONCILE, WATCHDOG

log = logging.getLogger(__name__)

WATCHDOG_INTERVAL = 60
RECONCILE_DELAY = 5
HELPER_BITRATE = 96
STOP_TIMEOUT = 5

# oldest helper release that can run a Connect session
CONNECT_HELPER_VERSION = "0.9.0"

# scheduler key for the watchdog, which belongs to no player
WATCHDOG_KEY = ("", WATCHDOG)


def parse_version(text: str) -> tuple[int, ...] | None:
    """First dotted version number in *text*: "spotty v1.2.3" -> (1, 2, 3)."""
    match = re.search(r"(\d+(?:\.\d+)+)", text or "")
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


class HelperHandle:
    """A running helper process plus the arguments it was started with."""

    def __init__(self, device_id: str, process, args: list[str]):
        self.device_id = device_id
        self.process = process
        self.args = args

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    @property
    def pid(self):
        return self.process.pid

    def terminate(self):
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass


class HelperManager:

    def __init__(self, registry, scheduler, api_for, spawner=None,
                 watchdog_interval=WATCHDOG_INTERVAL, reconcile_delay=RECONCILE_DELAY):
        self.registry = registry
        self.scheduler = scheduler
        self.api_for = api_for
        self._spawn = spawner or asyncio.create_subprocess_exec
        self.watchdog_interval = watchdog_interval
        self.reconcile_delay = reconcile_delay
        self._handles: dict[str, HelperHandle] = {}
        self._watchdog_lock = asyncio.Lock()
        self.supported = True

    # ── Handles ──

    def handle(self, device_id: str) -> HelperHandle | None:
        return self._handles.get(device_id)

    def is_running(self, device_id: str) -> bool:
        handle = self._handles.get(device_id)
        return bool(handle and handle.alive)

    def helper_args(self, device) -> list[str]:
        cache_dir = cfg("connect", "cache_dir", default="/var/cache/beo-connect")
        host = cfg("connect", "server_host", default="127.0.0.1")
        port = cfg("connect", "port", default=8773)
        return [
            "-c", os.path.join(cache_dir, device.account),
            "-n", device.name,
            "--disable-discovery",
            "--disable-audio-cache",
            "--bitrate", str(cfg("connect", "bitrate", default=HELPER_BITRATE)),
            "--player-mac", device.id,
            "--lms", f"{host}:{port}",
        ]

    async def start_helper(self, device) -> bool:
        """Start the helper for *device* unless one is already alive."""
        if self.is_running(device.id):
            return True

        helper_path = cfg("connect", "helper", default="spotty")
        args = self.helper_args(device)
        log.info("Starting Connect helper for %s: %s %s", device.id, helper_path, " ".join(args))

        try:
            process = await self._spawn(
                helper_path, *args,
                stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except Exception as e:
            self._handles.pop(device.id, None)
            log.warning("Failed to launch the Connect helper for %s: %s", device.id, e)
            return False

        handle = HelperHandle(device.id, process, args)
        self._handles[device.id] = handle
        return handle.alive

    def stop_helper(self, device_id: str):
        """Terminate the helper for *device_id*; no-op if none is running."""
        handle = self._handles.pop(device_id, None)
        if handle and handle.alive:
            log.info("Quitting Connect helper for %s", device_id)
            handle.terminate()

    def shutdown_helpers(self, inactive_only=False):
        """Stop helpers; with *inactive_only*, only those whose player is gone."""
        live = self.registry.ids() if inactive_only else set()
        for device_id in list(self._handles):
            if device_id in live:
                continue
            self.stop_helper(device_id)

    async def close(self):
        """Stop every helper and wait for them to exit (service shutdown)."""
        self.scheduler.cancel(WATCHDOG_KEY)
        handles = [h for h in self._handles.values() if h.alive]
        self.shutdown_helpers()
        for handle in handles:
            try:
                await asyncio.wait_for(handle.process.wait(), timeout=STOP_TIMEOUT)
            except asyncio.TimeoutError:
                log.warning("Connect helper for %s ignored SIGTERM, killing", handle.device_id)
                handle.process.kill()
            except Exception as e:
                log.debug("Waiting for helper %s: %s", handle.device_id, e)

    async def check_helper_version(self) -> bool:
        """Run `<helper> --version` once; Connect stays off if it is too old."""
        helper_path = cfg("connect", "helper", default="spotty")
        try:
            process = await self._spawn(
                helper_path, "--version",
                stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
            output, _ = await asyncio.wait_for(process.communicate(), timeout=STOP_TIMEOUT)
        except Exception as e:
            log.error("Cannot run the Connect helper %s: %s", helper_path, e)
            self.supported = False
            return False

        text = output.decode(errors="replace").strip() if output else ""
        version = parse_version(text)
        if version is None or version < parse_version(CONNECT_HELPER_VERSION):
            log.error("Cannot support Spotify Connect, need at least helper version %s (got %r)",
                      CONNECT_HELPER_VERSION, text)
            self.supported = False
            return False

        log.info("Connect helper version: %s", text)
        self.supported = True
        return True

    # ── Watchdog ──

    async def init_helpers(self):
        """One watchdog pass, then reschedule the next one."""
        if not self.supported:
            return
        self.scheduler.cancel(WATCHDOG_KEY)
        async with self._watchdog_lock:
            try:
                await self._check_helpers()
            finally:
                self.scheduler.schedule(WATCHDOG_KEY, self.watchdog_interval, self.init_helpers)

    async def _check_helpers(self):
        log.debug("Checking Connect helper daemons...")

        # orphans first: helpers whose player disconnected
        self.shutdown_helpers(inactive_only=True)

        for device in self.registry:
            if not device.enabled:
                self.stop_helper(device.id)
                continue

            api = self.api_for(device)
            need_connect_player = not api.id_from_mac(device.id)

            if need_connect_player or not self.is_running(device.id):
                log.info("Need to start Connect helper for %s", device.id)
                if need_connect_player:
                    self.scheduler.cancel((device.id, RECONCILE))
                    self.stop_helper(device.id)
                started = await self.start_helper(device)

                if started and need_connect_player:
                    self.scheduler.schedule(
                        (device.id, RECONCILE), self.reconcile_delay,
                        self._get_connect_players, device.id)

    async def _get_connect_players(self, device_id: str):
        device = self.registry.get(device_id)
        if device is None:
            return
        api = self.api_for(device)
        if not api.id_from_mac(device_id):
            await api.devices()
