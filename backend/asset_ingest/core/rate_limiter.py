"""Sliding-window rate limiting, keyed by logical operation ("upload", "status").

Design:
- At most `max_requests` admissions per trailing `window_seconds`, per key,
  plus an optional minimum gap between consecutive admissions.
- Check + record is one critical section under a mutex. Waiting never holds it.
- Waiters for one key are served strictly FIFO. Only the head of the queue
  sleeps on the clock; everyone behind it sleeps until handed the head slot.
- Synchronous calls (try_admit, record_admission, reset) are safe from any
  thread; queued waiters are woken on their own event loop.
- One limiter per process, owned and injected by whoever builds the
  orchestrator. There is no module-level instance.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional

from asset_ingest.core.errors import ConfigError, RateLimitExceeded

logger = logging.getLogger("asset_ingest.rate_limit")


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    max_requests: int = 10
    window_seconds: float = 60.0
    min_delay_seconds: float = 2.0
    auto_throttle: bool = True  # False: refuse with RateLimitExceeded instead of waiting

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ConfigError("max_requests must be > 0.")
        if self.window_seconds <= 0:
            raise ConfigError("window_seconds must be > 0.")
        if self.min_delay_seconds < 0:
            raise ConfigError("min_delay_seconds must be >= 0.")


@dataclass(frozen=True, slots=True, eq=False)
class _Waiter:
    event: asyncio.Event
    loop: asyncio.AbstractEventLoop

    def wake(self) -> None:
        # Safe from any thread: set the event on the loop that awaits it.
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            self.event.set()
        elif not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.event.set)


@dataclass(frozen=True, slots=True)
class RateLimitStatus:
    can_admit: bool
    wait_seconds: float
    requests_in_window: int
    max_requests: int
    window_seconds: float
    queued: int


class SlidingWindowRateLimiter:
    def __init__(
        self,
        policy: Optional[RateLimitPolicy] = None,
        *,
        overrides: Optional[dict[str, RateLimitPolicy]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default = policy or RateLimitPolicy()
        self._overrides = dict(overrides or {})
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, Deque[float]] = {}
        self._last: dict[str, float] = {}
        self._waiters: dict[str, Deque[_Waiter]] = {}

    def policy_for(self, key: str) -> RateLimitPolicy:
        return self._overrides.get(key, self._default)

    # --- locked helpers (caller holds self._lock) ---

    def _prune_locked(self, key: str, now: float) -> Deque[float]:
        window = self._windows.setdefault(key, deque())
        horizon = now - self.policy_for(key).window_seconds
        while window and window[0] <= horizon:
            window.popleft()
        return window

    def _wait_locked(self, key: str, now: float) -> float:
        policy = self.policy_for(key)
        window = self._prune_locked(key, now)

        window_wait = 0.0
        if len(window) >= policy.max_requests:
            # The slot frees when the entry that keeps us at the cap ages out.
            blocking = window[len(window) - policy.max_requests]
            window_wait = blocking + policy.window_seconds - now

        delay_wait = 0.0
        last = self._last.get(key)
        if last is not None and policy.min_delay_seconds > 0:
            delay_wait = last + policy.min_delay_seconds - now

        return max(0.0, window_wait, delay_wait)

    def _record_locked(self, key: str, now: float) -> None:
        window = self._prune_locked(key, now)
        window.append(now)
        self._last[key] = now
        self._wake_head_locked(key)

    def _wake_head_locked(self, key: str) -> None:
        queue = self._waiters.get(key)
        if queue:
            queue[0].wake()

    # --- public API ---

    def can_admit(self, key: str = "default") -> bool:
        with self._lock:
            if self._waiters.get(key):
                return False
            return self._wait_locked(key, self._clock()) <= 0

    def time_until_next_slot(self, key: str = "default") -> float:
        with self._lock:
            return self._wait_locked(key, self._clock())

    def record_admission(self, key: str = "default") -> None:
        with self._lock:
            self._record_locked(key, self._clock())

    def try_admit(self, key: str = "default") -> bool:
        """Atomic check-and-record. Never jumps ahead of queued waiters."""
        with self._lock:
            if self._waiters.get(key):
                return False
            now = self._clock()
            if self._wait_locked(key, now) > 0:
                return False
            self._record_locked(key, now)
            return True

    async def await_admission(
        self,
        key: str = "default",
        on_wait: Optional[Callable[[float], None]] = None,
    ) -> float:
        """Suspend until admitted. Returns the seconds spent waiting."""
        waiter = _Waiter(asyncio.Event(), asyncio.get_running_loop())
        with self._lock:
            queue = self._waiters.setdefault(key, deque())
            now = self._clock()
            if not queue and self._wait_locked(key, now) <= 0:
                self._record_locked(key, now)
                return 0.0
            queue.append(waiter)

        started = self._clock()
        notified = False
        try:
            while True:
                with self._lock:
                    now = self._clock()
                    is_head = queue[0] is waiter
                    wait = self._wait_locked(key, now) if is_head else None
                    if is_head and wait <= 0:
                        queue.popleft()
                        self._record_locked(key, now)
                        return now - started
                    waiter.event.clear()

                if wait and on_wait is not None and not notified:
                    notified = True
                    on_wait(wait)

                if is_head:
                    logger.debug("Rate limit '%s': waiting %.2fs for a slot", key, wait)
                    try:
                        await asyncio.wait_for(waiter.event.wait(), timeout=wait)
                    except asyncio.TimeoutError:
                        pass
                else:
                    await waiter.event.wait()
        except asyncio.CancelledError:
            with self._lock:
                was_head = bool(queue) and queue[0] is waiter
                try:
                    queue.remove(waiter)
                except ValueError:
                    pass
                if was_head:
                    self._wake_head_locked(key)
            raise

    async def admit(self, key: str = "default", on_wait: Optional[Callable[[float], None]] = None) -> float:
        """Throttle or refuse depending on the key's policy."""
        if self.policy_for(key).auto_throttle:
            return await self.await_admission(key, on_wait)
        with self._lock:
            now = self._clock()
            wait = self._wait_locked(key, now)
            if wait <= 0 and not self._waiters.get(key):
                self._record_locked(key, now)
                return 0.0
        raise RateLimitExceeded(key, wait)

    def status(self, key: str = "default") -> RateLimitStatus:
        policy = self.policy_for(key)
        with self._lock:
            now = self._clock()
            wait = self._wait_locked(key, now)
            queued = len(self._waiters.get(key) or ())
            return RateLimitStatus(
                can_admit=wait <= 0 and queued == 0,
                wait_seconds=wait,
                requests_in_window=len(self._windows.get(key) or ()),
                max_requests=policy.max_requests,
                window_seconds=policy.window_seconds,
                queued=queued,
            )

    def queue_length(self, key: str = "default") -> int:
        with self._lock:
            return len(self._waiters.get(key) or ())

    def reset(self, key: str = "default") -> None:
        """Forget admission history for a key. Queued waiters re-check immediately."""
        with self._lock:
            self._windows.pop(key, None)
            self._last.pop(key, None)
            self._wake_head_locked(key)

    def reset_all(self) -> None:
        with self._lock:
            self._windows.clear()
            self._last.clear()
            for key in list(self._waiters):
                self._wake_head_locked(key)
