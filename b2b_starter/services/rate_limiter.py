"""In-memory rate limiting for the public auth routes."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Deque

from b2b_starter.config import settings
from b2b_starter.core.exceptions import RateLimitExceededError


@dataclass
class _Bucket:
    window_seconds: int
    hits: Deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self.hits and self.hits[0] <= cutoff:
            self.hits.popleft()

    def is_stale(self, now: float) -> bool:
        return not self.hits or self.hits[-1] <= now - self.window_seconds


class InMemoryRateLimiter:
    """
    Sliding-window limiter for a single node.

    Keys usually embed a client address, so the key space is unbounded. Once
    more than ``max_keys`` keys are tracked, buckets whose window has passed
    are swept and then the least recently used ones are evicted.
    """

    def __init__(self, max_keys: int = 10000) -> None:
        if max_keys < 1:
            raise ValueError("max_keys must be positive")
        self.max_keys = max_keys
        self._lock = threading.Lock()
        self._buckets: "OrderedDict[str, _Bucket]" = OrderedDict()

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = time.monotonic()

        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = _Bucket(window_seconds)
                if len(self._buckets) > self.max_keys:
                    self._evict(now, keep=key)
            else:
                self._buckets.move_to_end(key)
                bucket.prune(now)

            if len(bucket.hits) >= limit:
                return False

            bucket.hits.append(now)
            return True

    def enforce(self, key: str, limit: int, window_seconds: int, message: str) -> None:
        """Count a hit for ``key`` or raise ``RateLimitExceededError``."""
        if not self.allow(key, limit, window_seconds):
            raise RateLimitExceededError(message)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()

    def __len__(self) -> int:
        return len(self._buckets)

    def _evict(self, now: float, keep: str) -> None:
        for key in [k for k, b in self._buckets.items() if k != keep and b.is_stale(now)]:
            del self._buckets[key]
        while len(self._buckets) > self.max_keys:
            self._buckets.popitem(last=False)


rate_limiter = InMemoryRateLimiter(max_keys=settings.RATE_LIMIT_MAX_KEYS)
