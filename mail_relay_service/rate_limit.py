# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Per-client request limiter used by the HTTP layer."""

import time
from collections import deque
from typing import Deque, Dict, Optional


class RateLimiter:
    """Simple in-memory sliding-window limiter keyed by client address."""

    def __init__(self, max_requests: int = 100, window_seconds: int = 900):
        """Allow ``max_requests`` per ``window_seconds``; zero or less disables the limit."""
        self.max_requests = int(max_requests)
        self.window_seconds = int(window_seconds)
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = 0.0

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window_seconds > 0

    def check_and_record(self, key: str) -> Optional[int]:
        """Record a request for ``key``.

        Returns ``None`` when the request is admitted, otherwise the number of
        seconds after which the oldest hit leaves the window.
        """
        if not self.enabled:
            return None
        now = time.time()
        cutoff = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now
        hits = self._hits.get(key)
        if hits is None:
            hits = self._hits[key] = deque()
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if len(hits) >= self.max_requests:
            return max(1, int(hits[0] + self.window_seconds - now + 0.999))
        hits.append(now)
        return None

    def _sweep(self, cutoff: float) -> None:
        """Drop clients whose most recent hit has left the window."""
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    def reset(self, key: Optional[str] = None) -> None:
        """Forget recorded hits for ``key`` or for every client."""
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)
