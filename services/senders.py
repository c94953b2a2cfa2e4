"""Bounded record of senders the bot has already greeted."""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable


class KnownSenders:
    """LRU set with a per-entry TTL.

    ``mark_seen`` returns True when a sender is new to us, either never seen,
    expired, or evicted to keep the set at ``max_size``.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 7 * 24 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._seen: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)

    def __contains__(self, sender_id: object) -> bool:
        with self._lock:
            seen_at = self._seen.get(str(sender_id))
            return seen_at is not None and not self._expired(seen_at)

    def _expired(self, seen_at: float) -> bool:
        return self._clock() - seen_at >= self.ttl_seconds

    def mark_seen(self, sender_id: str) -> bool:
        key = str(sender_id)
        now = self._clock()
        with self._lock:
            seen_at = self._seen.get(key)
            is_new = seen_at is None or self._expired(seen_at)
            self._seen[key] = now
            self._seen.move_to_end(key)
            while len(self._seen) > self.max_size:
                self._seen.popitem(last=False)
            return is_new

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()
