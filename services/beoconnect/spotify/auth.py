# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Spotify access tokens per account, refreshed on demand.
"""

import asyncio
import json
import logging
import time
import urllib.error

from ..config import cfg
from .pkce import refresh_access_token
from .tokens import load_tokens, save_tokens

log = logging.getLogger(__name__)


class SpotifyAuth:
    """Caches an access token for one account and refreshes it before expiry."""

    def __init__(self, account: str):
        self.account = account
        self._access_token = None
        self._token_expiry = 0
        self._client_id = None
        self._refresh_token = None
        self.revoked = False

    def load(self):
        """Load credentials from the token store. Returns True if usable."""
        tokens = load_tokens(self.account) or {}
        client_id = tokens.get("client_id") or cfg("spotify", "client_id", default="")
        if client_id and tokens.get("refresh_token"):
            self._client_id = client_id
            self._refresh_token = tokens["refresh_token"]
            log.info("Spotify credentials loaded for account %s", self.account)
            return True
        log.warning("No Spotify tokens for account %s", self.account)
        return False

    async def get_token(self):
        """Get a valid access token, refreshing if needed."""
        if self._access_token and time.monotonic() < self._token_expiry:
            return self._access_token
        if not self._refresh_token and not self.load():
            raise RuntimeError(f"No Spotify credentials for account {self.account}")
        return await self._refresh()

    async def _refresh(self):
        loop = asyncio.get_running_loop()

        try:
            result = await loop.run_in_executor(
                None, refresh_access_token, self._client_id, self._refresh_token)
        except urllib.error.HTTPError as e:
            if e.code == 400:
                self._mark_revoked(e)
            raise

        self._access_token = result["access_token"]
        self._token_expiry = time.monotonic() + result.get("expires_in", 3600) - 300

        new_rt = result.get("refresh_token")
        if new_rt and new_rt != self._refresh_token:
            self._refresh_token = new_rt
            await loop.run_in_executor(
                None, save_tokens, self.account, self._client_id, new_rt)
            log.info("Refresh token rotated for account %s", self.account)

        return self._access_token

    def _mark_revoked(self, exc):
        try:
            error = json.loads(exc.read().decode()).get("error", "")
        except Exception:
            error = ""
        if error == "invalid_grant":
            self.revoked = True
            log.error("Spotify refresh token for %s revoked — re-authentication required",
                      self.account)
        else:
            log.warning("Token refresh failed (400): %s", error)

    @property
    def is_configured(self):
        return bool(self._client_id and self._refresh_token)
