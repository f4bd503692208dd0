# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
One-shot delayed tasks keyed by (device_id, kind).

Scheduling a key that is already pending cancels the old task first, which
gives debounce (volume) and self-rescheduling (watchdog) for free.  A task
drops its key before running its callback, so a callback may reschedule its
own key without cancelling itself.

Usage:
    scheduler.schedule((device_id, VOLUME), 0.5, push_volume, device_id, 42)
    scheduler.cancel_device(device_id)
"""

import asyncio
import inspect
import logging

log = logging.getLogger(__name__)

VOLUME = "volume"
HISTORY = "history"
RECONCILE = "reconcile"
WATCHDOG = "watchdog"


class TaskScheduler:

    def __init__(self):
        self._tasks: dict[tuple, asyncio.Task] = {}

    def schedule(self, key: tuple, delay: float, callback, *args) -> asyncio.Task:
        """Run callback(*args) after *delay* seconds, replacing any pending task for *key*."""
        self.cancel(key)
        task = asyncio.create_task(self._run(key, delay, callback, args))
        self._tasks[key] = task
        return task

    async def _run(self, key, delay, callback, args):
        try:
            if delay > 0:
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Scheduled task %s failed", key)

    def cancel(self, key: tuple) -> bool:
        task = self._tasks.pop(key, None)
        if task and not task.done():
            task.cancel()
            return True
        return False

    def cancel_device(self, device_id: str, kinds=None):
        """Cancel every pending task for *device_id* (optionally only *kinds*)."""
        for key in [k for k in self._tasks if k[0] == device_id]:
            if kinds is None or key[1] in kinds:
                self.cancel(key)

    def cancel_all(self):
        for key in list(self._tasks):
            self.cancel(key)

    def pending(self, key: tuple) -> bool:
        task = self._tasks.get(key)
        return bool(task and not task.done())

    def keys(self) -> list[tuple]:
        return [k for k, t in self._tasks.items() if not t.done()]
