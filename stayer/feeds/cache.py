"""In-process TWAP feed the oracle pulls from.

The keeper records every fetched price here; the oracle reads a
time-weighted average over the recent window through ``get_twap_price``.
"""
from __future__ import annotations

import logging
from collections import deque

from ..interfaces import Clock

logger = logging.getLogger(__name__)


class FeedCache:
    def __init__(self, clock: Clock, window_seconds: int = 3600, max_samples: int = 64) -> None:
        self._clock = clock
        self._window = window_seconds
        self._max_samples = max_samples
        self._samples: dict[str, deque[tuple[int, int]]] = {}

    def record(self, feed_id: str, price: int) -> None:
        samples = self._samples.setdefault(feed_id, deque(maxlen=self._max_samples))
        samples.append((self._clock.now(), price))
        logger.debug("Recorded %s = %d", feed_id, price)

    def get_twap_price(self, feed_id: str) -> int | None:
        """Time-weighted average of the samples inside the window, or None."""
        now = self._clock.now()
        recent = [(t, p) for t, p in self._samples.get(feed_id, ()) if now - t <= self._window]
        if not recent:
            return None

        weighted = 0
        total_weight = 0
        for i, (t, price) in enumerate(recent):
            end = recent[i + 1][0] if i + 1 < len(recent) else now
            weight = max(end - t, 1)
            weighted += price * weight
            total_weight += weight
        return weighted // total_weight

    def latest(self, feed_id: str) -> int | None:
        samples = self._samples.get(feed_id)
        return samples[-1][1] if samples else None
