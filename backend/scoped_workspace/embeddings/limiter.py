"""Bounded-concurrency limiter with first-come first-served admission."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, TypeVar

T = TypeVar("T")


class RateLimiter:
    """At most ``max_concurrency`` holders at once; waiters are admitted in arrival order."""

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._cond = threading.Condition()
        self._active = 0
        self._queue: deque[object] = deque()

    def acquire(self, timeout: float | None = None) -> bool:
        """Wait for a slot in arrival order; False if ``timeout`` seconds pass first."""
        ticket = object()
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            self._queue.append(ticket)
            try:
                while self._queue[0] is not ticket or self._active >= self.max_concurrency:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        self._queue.remove(ticket)
                        self._cond.notify_all()
                        return False
                    self._cond.wait(remaining)
            except BaseException:
                self._queue.remove(ticket)
                self._cond.notify_all()
                raise
            self._queue.popleft()
            self._active += 1
            self._cond.notify_all()
            return True

    def release(self) -> None:
        with self._cond:
            if self._active == 0:
                raise RuntimeError("release without acquire")
            self._active -= 1
            self._cond.notify_all()

    def run(self, fn: Callable[..., T], *args, **kwargs) -> T:
        with self:
            return fn(*args, **kwargs)

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._active

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._queue)

    def __enter__(self) -> "RateLimiter":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = ["RateLimiter"]
