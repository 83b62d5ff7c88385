# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""Sliding-window rate limiting.

Counts events whose timestamps fall in the trailing window, per key.
Per-key histories live in a `TTLCache` so idle keys are evicted on their own
once their newest event has left the window.
"""

import time
from collections import deque
from typing import Callable, Deque, MutableMapping

from cachetools import TTLCache

DEFAULT_WINDOW_SECONDS = 60.0


class SlidingWindowRateLimiter:
    """Per-key sliding-window counter. One instance per concern (IP, sender)."""

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_keys: int = 100_000,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initializes the limiter.

        Args:
            window_seconds: Length of the trailing window.
            max_keys: Upper bound on tracked keys.
            timer: Clock used for both timestamps and eviction.
        """
        self.window_seconds = window_seconds
        self._timer = timer
        self._hits: MutableMapping[str, Deque[float]] = TTLCache(maxsize=max_keys, ttl=window_seconds, timer=timer)

    def hit(self, key: str, limit: int) -> bool:
        """
        Records an attempt for `key` if it is under `limit`.

        Returns:
            True if the attempt is allowed (and counted), False if limited.
        """
        now = self._timer()
        timestamps = self._hits.get(key)
        if timestamps is None:
            timestamps = deque()

        while timestamps and now - timestamps[0] >= self.window_seconds:
            timestamps.popleft()

        if len(timestamps) >= limit:
            return False

        timestamps.append(now)
        # Re-inserting restarts the TTL from the newest event.
        self._hits[key] = timestamps
        return True

    def count(self, key: str) -> int:
        timestamps = self._hits.get(key)
        if not timestamps:
            return 0
        now = self._timer()
        return sum(1 for t in timestamps if now - t < self.window_seconds)

    def reset(self) -> None:
        """Forgets every key. Intended for test isolation."""
        self._hits.clear()
