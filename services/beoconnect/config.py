# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Shared configuration loader for beo-connect.

Loads a single JSON config file per device.  Search order:
  1. /etc/beosound5c/config.json   (deployed by deploy.sh)
  2. config.json                    (CWD, handy for local dev)
  3. ../../config/default.json      (repo fallback)

Tokens for the remote API stay in their own per-account store (see
spotify/tokens.py), never in this file.

Usage:
    from beoconnect.config import cfg

    helper_bin = cfg("connect", "helper", default="spotty")
    devices    = cfg("connect", "devices", default={})
    client_id  = cfg("spotify", "client_id", default="")
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/beosound5c/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    connect = config.get("connect") or {}
    if not connect:
        logger.warning("Config %s: missing 'connect' section, using defaults", path)
        return
    if not connect.get("helper"):
        logger.warning("Config %s: missing connect.helper, falling back to 'spotty' on PATH", path)
    devices = connect.get("devices") or {}
    if not isinstance(devices, dict):
        logger.error("Config %s: connect.devices must be an object keyed by player id", path)
        return
    for device_id, dev in devices.items():
        if not isinstance(dev, dict):
            logger.warning("Config %s: connect.devices.%s is not an object", path, device_id)
        elif dev.get("enabled") and not (dev.get("account") or connect.get("default_account")):
            logger.warning("Config %s: device %s has Connect enabled but no account", path, device_id)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("connect")                      → config["connect"]
    cfg("connect", "helper")            → config["connect"]["helper"]
    cfg("connect", "port", default=8773) → config["connect"]["port"] or 8773
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def device_settings(device_id: str) -> dict:
    """Per-device Connect settings with defaults filled in."""
    devices = cfg("connect", "devices", default={}) or {}
    dev = devices.get(device_id) or {}
    return {
        "name": dev.get("name"),
        "enabled": bool(dev.get("enabled", cfg("connect", "enabled", default=False))),
        "account": dev.get("account") or cfg("connect", "default_account", default="default"),
    }


def set_config(config: dict | None):
    """Replace the cached config (tests, or a caller that built its own)."""
    global _config
    _config = config


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
