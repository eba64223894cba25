"""In-memory sliding-window limiter for the public auth endpoints."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque

from ..errors import RateLimited


class AttemptLimiter:
    """Allow at most `max_attempts` hits per key inside `window_seconds`.

    Once more than `max_tracked_keys` keys are held, keys whose every hit
    has left the window are dropped.
    """

    def __init__(self, max_attempts: int, window_seconds: int, max_tracked_keys: int = 1024):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.max_tracked_keys = max_tracked_keys
        self._hits: dict[str, deque] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str) -> None:
        """Record one attempt for `key`; raise `RateLimited` when over budget."""
        now = time.monotonic()
        cutoff = now - self.window_seconds
        with self._lock:
            if len(self._hits) >= self.max_tracked_keys:
                self._prune(cutoff)
            q = self._hits[key]
            while q and q[0] < cutoff:
                q.popleft()
            if len(q) >= self.max_attempts:
                raise RateLimited(max(1, int(self.window_seconds - (now - q[0]))))
            q.append(now)

    def _prune(self, cutoff: float) -> None:
        for key in [k for k, q in self._hits.items() if not q or q[-1] < cutoff]:
            del self._hits[key]

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)
