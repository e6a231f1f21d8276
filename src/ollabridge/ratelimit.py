from __future__ import annotations

import time
from collections.abc import Callable, Hashable

import anyio

DEFAULT_MAX_REQUESTS = 10
DEFAULT_WINDOW_S = 60.0


class SlidingWindowLimiter:
    """Per-sender sliding window admission check.

    One lock guards the whole map, so calls are serialized across senders.
    Timestamps at or before ``now - window_s`` are pruned on every call,
    including rejected ones.
    """

    def __init__(
        self,
        *,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_s: float = DEFAULT_WINDOW_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests if max_requests > 0 else DEFAULT_MAX_REQUESTS
        self._window_s = window_s if window_s > 0 else DEFAULT_WINDOW_S
        self._clock = clock
        self._lock = anyio.Lock()
        self._windows: dict[Hashable, list[float]] = {}

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_s(self) -> float:
        return self._window_s

    async def check_and_record(self, key: Hashable) -> bool:
        async with self._lock:
            now = self._clock()
            window_start = now - self._window_s
            recent = [t for t in self._windows.get(key, ()) if t > window_start]
            if len(recent) >= self._max_requests:
                self._windows[key] = recent
                return False
            recent.append(now)
            self._windows[key] = recent
            return True
