# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Playback history for Connect sessions.

One process-wide url -> play count map.  It is only a loop breaker: when the
remote session hands us a track we already played in this listening context,
we assume the context (playlist, album, ...) wrapped around.  Cleared on every
fresh Connect start.
"""

import logging
from collections import OrderedDict

log = logging.getLogger(__name__)

HISTORY_SIZE = 500


class PlaybackHistory:
    """Bounded LRU map of url -> play count."""

    def __init__(self, max_size=HISTORY_SIZE):
        self.max_size = max_size
        self._counts: OrderedDict[str, int] = OrderedDict()

    def increment(self, url: str) -> int:
        count = self._counts.pop(url, 0) + 1
        self._counts[url] = count
        while len(self._counts) > self.max_size:
            self._counts.popitem(last=False)
        return count

    def count(self, url: str) -> int:
        return self._counts.get(url, 0)

    def clear(self):
        if self._counts:
            log.debug("Clearing playback history (%d tracks)", len(self._counts))
        self._counts.clear()

    def __contains__(self, url: str):
        return url in self._counts

    def __len__(self):
        return len(self._counts)


# Shared by every device on purpose; reset by the remote handler on new contexts.
history = PlaybackHistory()
