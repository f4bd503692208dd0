# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
PKCE refresh grant for Spotify.

The account setup (authorization code exchange) happens in the Spotify source
service; beo-connect only ever refreshes.  Blocking urllib on purpose, callers
wrap it in run_in_executor().
"""

import json
import urllib.parse
import urllib.request

TOKEN_URL = "https://accounts.spotify.com/api/token"


def refresh_access_token(client_id, refresh_token):
    """Refresh an access token (client_id in body, no secret).

    Returns dict with 'access_token', 'expires_in' and optionally a rotated
    'refresh_token'.  Raises urllib.error.HTTPError on failure.
    """
    data = urllib.parse.urlencode({
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": client_id,
    }).encode()
    req = urllib.request.Request(
        TOKEN_URL,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )

    with urllib.request.urlopen(req, timeout=10) as resp:
        return json.loads(resp.read().decode())
