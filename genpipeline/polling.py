from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from providers.base import Operation

from .errors import JobCancelledError, PollingError
from .timeouts import OperationDeadline

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """Stops local waiting when triggered. It never implies the remote job stopped."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, context: str) -> None:
        if self.cancelled:
            raise JobCancelledError(f"{self.reason or 'cancelled'} ({context}).")


async def sleep_or_cancel(
    seconds: float,
    sleep: Callable[[float], Awaitable[None]],
    cancel_token: CancellationToken | None,
) -> None:
    if cancel_token is None:
        await sleep(seconds)
        return
    cancel_token.raise_if_cancelled("before wait")
    sleeper = asyncio.ensure_future(sleep(seconds))
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            if not task.done():
                task.cancel()
        await asyncio.gather(sleeper, waiter, return_exceptions=True)
    cancel_token.raise_if_cancelled("while waiting")


async def poll_until_done(
    fetch: Callable[[], Awaitable[Operation]],
    *,
    operation_name: str,
    deadline: OperationDeadline,
    interval_seconds: float,
    sleep: Callable[[float], Awaitable[None]],
    backoff_factor: float = 1.0,
    max_interval_seconds: float | None = None,
    max_consecutive_errors: int = 3,
    cancel_token: CancellationToken | None = None,
    on_poll: Callable[[Operation, int], None] | None = None,
) -> tuple[Operation, int]:
    """
    Sleep, then fetch, until the operation reports ``done`` or the deadline passes.

    The deadline is checked after every sleep, before the fetch: no fetch is
    issued once ``elapsed >= budget``, so an operation that would only report
    done at the deadline instant raises ``OperationTimeoutError``. Transient
    fetch failures are tolerated up to ``max_consecutive_errors`` in a row.
    """
    delay = float(interval_seconds)
    ceiling = max(float(max_interval_seconds or delay), delay)
    polls = 0
    consecutive_errors = 0
    while True:
        deadline.check(operation_name)
        await sleep_or_cancel(min(delay, max(0.0, deadline.remaining())), sleep, cancel_token)
        deadline.check(operation_name)

        try:
            operation = await fetch()
        except PollingError as exc:
            consecutive_errors += 1
            if not exc.transient or consecutive_errors > max_consecutive_errors:
                raise
            LOGGER.warning(
                "Poll of %s failed (%s); tolerating %d/%d",
                operation_name,
                exc,
                consecutive_errors,
                max_consecutive_errors,
            )
        else:
            consecutive_errors = 0
            polls += 1
            if on_poll is not None:
                on_poll(operation, polls)
            if operation.done:
                return operation, polls

        delay = min(delay * backoff_factor, ceiling)
