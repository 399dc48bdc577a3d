from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_ms: int  # epoch ms at which the current window ends


class FixedWindowRateLimiter:
    """
    Fixed-window counter keyed by (client, window index).

    Counters for windows older than the current one are pruned on access, so
    memory stays bounded by the number of clients seen in one window.
    """

    def __init__(self, *, limit: int = 100, window_seconds: float = 60.0, clock: Callable[[], float] = time.time) -> None:
        self.limit = max(1, int(limit))
        self.window_ms = max(1, int(float(window_seconds) * 1000))
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: Dict[Tuple[str, int], int] = {}
        self._current_window = -1

    def hit(self, client: str) -> RateDecision:
        now_ms = int(self._clock() * 1000)
        window = now_ms // self.window_ms
        reset_ms = (window + 1) * self.window_ms
        key = (str(client or "unknown"), window)
        with self._lock:
            if window != self._current_window:
                self._counts = {k: v for k, v in self._counts.items() if k[1] >= window}
                self._current_window = window
            count = self._counts.get(key, 0)
            if count >= self.limit:
                return RateDecision(allowed=False, limit=self.limit, remaining=0, reset_ms=reset_ms)
            self._counts[key] = count + 1
            return RateDecision(allowed=True, limit=self.limit, remaining=self.limit - count - 1, reset_ms=reset_ms)

    def allow(self, client: str) -> bool:
        return self.hit(client).allowed

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._counts)
