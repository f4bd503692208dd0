# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Atomic per-account token storage for Spotify PKCE credentials.

Each account gets ``<store>/<account>.json`` with client_id + refresh_token.
Writes are atomic (temp file + rename) so a crash mid-write never corrupts
the file.

Store directories (first existing or writable wins):
  1. /etc/beosound5c/spotify_tokens/   (production on Pi)
  2. <script_dir>/spotify_tokens/       (dev fallback)
"""

import json
import os
import re
import tempfile
from datetime import datetime, timezone

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))

STORE_DIRS = [
    "/etc/beosound5c/spotify_tokens",
    os.path.join(SCRIPT_DIR, "spotify_tokens"),
]


def _account_file(account: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", account or "default") + ".json"


def _find_store_dir():
    for d in STORE_DIRS:
        if os.path.isdir(d):
            return d
    for d in STORE_DIRS:
        parent = os.path.dirname(d)
        if os.path.isdir(parent) and os.access(parent, os.W_OK):
            return d
    return STORE_DIRS[-1]


def token_path(account: str) -> str:
    return os.path.join(_find_store_dir(), _account_file(account))


def load_tokens(account: str):
    """Load tokens for *account*. Returns dict or None if not found."""
    try:
        with open(token_path(account)) as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return None


def save_tokens(account: str, client_id, refresh_token):
    """Atomically save tokens for *account*."""
    path = token_path(account)
    data = {
        "account": account,
        "client_id": client_id,
        "refresh_token": refresh_token,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }

    d = os.path.dirname(path)
    os.makedirs(d, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=d, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise

    return path
