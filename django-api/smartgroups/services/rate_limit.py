from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_s: float


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """Per-actor fixed-window counter.

    A window starts on an actor's first call and is replaced lazily by the
    first call after it elapses. Actors are spread over a fixed set of lock
    stripes, so busy actors rarely slow down quiet ones and the lock count
    does not grow with the number of actors. Windows that elapsed are swept
    at most once per window length, so only actors seen within roughly the
    last two windows are kept.
    """

    def __init__(self, policy: RateLimitPolicy, *, clock: Callable[[], float] = time.monotonic) -> None:
        if policy.limit < 1 or policy.window_s <= 0:
            raise ValueError("Rate limit needs a positive limit and window")
        self.policy = policy
        self._clock = clock
        self._stripes = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._windows: dict[str, _Window] = {}
        self._sweep_lock = threading.Lock()
        self._last_sweep = clock()

    def allow(self, actor_id: str) -> bool:
        now = self._clock()
        self._sweep(now)
        with self._stripe(actor_id):
            window = self._windows.get(actor_id)
            if window is None or self._elapsed(window, now):
                window = self._windows[actor_id] = _Window(started_at=now)
            if window.count >= self.policy.limit:
                logger.info("Rate limit hit for %s (%d per %.0fs)", actor_id, self.policy.limit, self.policy.window_s)
                return False
            window.count += 1
            return True

    def retry_after(self, actor_id: str) -> float:
        """Seconds until the actor's current window rolls over (0 when no window is open)."""
        with self._stripe(actor_id):
            window = self._windows.get(actor_id)
            if window is None:
                return 0.0
            return max(0.0, self.policy.window_s - (self._clock() - window.started_at))

    def _stripe(self, actor_id: str) -> threading.Lock:
        return self._stripes[hash(actor_id) % LOCK_STRIPES]

    def _elapsed(self, window: _Window, now: float) -> bool:
        return now - window.started_at >= self.policy.window_s

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.policy.window_s:
            return
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            self._last_sweep = now
            removed = 0
            for actor_id in list(self._windows):
                with self._stripe(actor_id):
                    window = self._windows.get(actor_id)
                    if window is not None and self._elapsed(window, now):
                        del self._windows[actor_id]
                        removed += 1
            if removed:
                logger.debug("Dropped %d elapsed rate-limit windows", removed)
        finally:
            self._sweep_lock.release()
