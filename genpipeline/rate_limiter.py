from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

FAILURE_KINDS = {"rate_limited", "unavailable", "timeout", "other"}


@dataclass(frozen=True)
class RateLimiterStatus:
    requests_in_window: int
    consecutive_failures: int
    next_slot_in_seconds: float
    max_requests: int
    window_seconds: float

    def to_dict(self) -> dict:
        return {
            "requests_in_window": self.requests_in_window,
            "consecutive_failures": self.consecutive_failures,
            "next_slot_in_seconds": round(self.next_slot_in_seconds, 3),
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
        }


class RateLimiter:
    """
    Sliding-window limiter with exponential backoff after consecutive failures.

    At most ``max_requests`` grants fall inside any trailing window of
    ``window_seconds``. After ``k`` reported failures the next grant is also held
    back until ``min(backoff_base_seconds * exponent_base**k, max_backoff_seconds)``
    has passed since the last failure. Grants are serialized by a lock so that
    concurrent callers never both observe the same free slot.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        *,
        backoff_base_seconds: float = 1.0,
        exponent_base: float = 2.0,
        max_backoff_seconds: float = 60.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        name: str = "default",
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive.")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive.")
        self.max_requests = max_requests
        self.window_seconds = float(window_seconds)
        self.backoff_base_seconds = float(backoff_base_seconds)
        self.exponent_base = float(exponent_base)
        self.max_backoff_seconds = float(max_backoff_seconds)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque(maxlen=max_requests)
        self._consecutive_failures = 0
        self._backoff_until: float | None = None
        self._last_failure_kind: str | None = None
        self._lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        # Created lazily so the limiter can be built outside a running loop.
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _evict(self, now: float) -> None:
        horizon = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= horizon:
            self._timestamps.popleft()

    def _window_wait(self, now: float) -> float:
        if len(self._timestamps) < self.max_requests:
            return 0.0
        return max(0.0, self._timestamps[0] + self.window_seconds - now)

    def _backoff_wait(self, now: float) -> float:
        if self._backoff_until is None:
            return 0.0
        return max(0.0, self._backoff_until - now)

    def backoff_delay(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self.backoff_base_seconds * (self.exponent_base**failures), self.max_backoff_seconds)

    async def acquire(self) -> float:
        """Wait for a free slot and record the grant. Returns the grant timestamp."""
        async with self._get_lock():
            waited = 0.0
            while True:
                now = self._clock()
                self._evict(now)
                delay = max(self._window_wait(now), self._backoff_wait(now))
                if delay <= 0:
                    break
                if waited == 0.0:
                    LOGGER.info(
                        "Rate limiter '%s': waiting %.1fs (%d/%d requests in window, %d consecutive failures)",
                        self.name,
                        delay,
                        len(self._timestamps),
                        self.max_requests,
                        self._consecutive_failures,
                    )
                waited += delay
                await self._sleep(delay)
            self._timestamps.append(now)
            return now

    def report_success(self) -> None:
        if self._consecutive_failures:
            LOGGER.debug("Rate limiter '%s': success, clearing %d failures", self.name, self._consecutive_failures)
        self._consecutive_failures = 0
        self._backoff_until = None
        self._last_failure_kind = None

    def report_failure(self, kind: str = "other") -> float:
        """Record a failed request and return the backoff now applied to the next grant."""
        if kind not in FAILURE_KINDS:
            kind = "other"
        self._consecutive_failures += 1
        self._last_failure_kind = kind
        delay = self.backoff_delay(self._consecutive_failures)
        self._backoff_until = self._clock() + delay
        LOGGER.warning(
            "Rate limiter '%s': request failed (%s), consecutive failures=%d, next backoff=%.1fs",
            self.name,
            kind,
            self._consecutive_failures,
            delay,
        )
        return delay

    def status(self) -> RateLimiterStatus:
        now = self._clock()
        horizon = now - self.window_seconds
        active = [stamp for stamp in self._timestamps if stamp > horizon]
        if len(active) >= self.max_requests:
            window_wait = max(0.0, active[0] + self.window_seconds - now)
        else:
            window_wait = 0.0
        return RateLimiterStatus(
            requests_in_window=len(active),
            consecutive_failures=self._consecutive_failures,
            next_slot_in_seconds=max(window_wait, self._backoff_wait(now)),
            max_requests=self.max_requests,
            window_seconds=self.window_seconds,
        )

    @property
    def last_failure_kind(self) -> str | None:
        return self._last_failure_kind

    def reset(self) -> None:
        self._timestamps.clear()
        self._consecutive_failures = 0
        self._backoff_until = None
        self._last_failure_kind = None


def veo3_rate_limiter(**kwargs) -> RateLimiter:
    return RateLimiter(
        10, 60.0, backoff_base_seconds=1.0, exponent_base=2.0, max_backoff_seconds=60.0, name="veo3", **kwargs
    )


def gemini_rate_limiter(**kwargs) -> RateLimiter:
    return RateLimiter(
        60, 60.0, backoff_base_seconds=1.0, exponent_base=1.5, max_backoff_seconds=30.0, name="gemini", **kwargs
    )


def conservative_rate_limiter(**kwargs) -> RateLimiter:
    return RateLimiter(
        5, 60.0, backoff_base_seconds=1.0, exponent_base=3.0, max_backoff_seconds=120.0, name="conservative", **kwargs
    )


def rate_limiter_from_config(config, **kwargs) -> RateLimiter:
    return RateLimiter(
        config.requests_per_window,
        config.window_seconds,
        backoff_base_seconds=config.backoff_base_seconds,
        exponent_base=config.backoff_exponent_base,
        max_backoff_seconds=config.max_backoff_seconds,
        name="veo3",
        **kwargs,
    )
