# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""Systemd notify heartbeat.  Silently no-ops when NOTIFY_SOCKET is unset."""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(msg: str):
    """Send a notification message to the systemd notify socket."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    finally:
        sock.close()


async def heartbeat_loop(status=None, interval: int = 20):
    """Send READY=1 once, then WATCHDOG=1 (plus STATUS from *status()*) every *interval* s."""
    sd_notify("READY=1")
    logger.info("Systemd heartbeat started (interval=%ds)", interval)
    while True:
        msg = "WATCHDOG=1"
        if status:
            msg += f"\nSTATUS={status()}"
        sd_notify(msg)
        await asyncio.sleep(interval)
