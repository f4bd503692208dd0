# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

from .api import ConnectAPI, from_connect_uri, to_connect_uri
from .auth import SpotifyAuth

__all__ = ["ConnectAPI", "SpotifyAuth", "from_connect_uri", "to_connect_uri"]
