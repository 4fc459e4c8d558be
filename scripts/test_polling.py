from __future__ import annotations

import asyncio
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from genpipeline.errors import JobCancelledError, OperationTimeoutError, PollingError
from genpipeline.polling import CancellationToken, poll_until_done
from genpipeline.timeouts import OperationDeadline
from providers.base import Operation
from scripts._fakes import FakeClock

OPERATION = "projects/p/locations/l/publishers/google/models/m/operations/op-1"


class ScriptedFetch:
    """Returns done on the N-th successful call; raises queued errors first."""

    def __init__(self, done_on: int | None, errors: list[PollingError] | None = None) -> None:
        self.done_on = done_on
        self.errors = list(errors or [])
        self.calls = 0

    async def __call__(self) -> Operation:
        if self.errors:
            raise self.errors.pop(0)
        self.calls += 1
        done = self.done_on is not None and self.calls >= self.done_on
        return Operation(name=OPERATION, done=done, response={"videos": []} if done else None)


async def _poll(clock: FakeClock, fetch: ScriptedFetch, budget: float, **kwargs) -> tuple[Operation, int]:
    return await poll_until_done(
        fetch,
        operation_name=OPERATION,
        deadline=OperationDeadline(budget, clock),
        interval_seconds=kwargs.pop("interval_seconds", 10.0),
        sleep=clock.sleep,
        **kwargs,
    )


def test_done_on_fourth_poll_finishes_at_forty_seconds() -> None:
    clock = FakeClock()
    operation, polls = asyncio.run(_poll(clock, ScriptedFetch(done_on=4), 600.0))
    if not operation.done or polls != 4:
        raise RuntimeError(f"Expected done after 4 polls, got done={operation.done} polls={polls}")
    if clock.now != 40.0:
        raise RuntimeError(f"Expected completion at t=40s, got t={clock.now}")


def test_never_done_raises_timeout_at_deadline() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(done_on=None)
    try:
        asyncio.run(_poll(clock, fetch, 30.0))
    except OperationTimeoutError as exc:
        if exc.operation_name != OPERATION:
            raise RuntimeError(f"Timeout lost the operation name: {exc.operation_name}")
    else:
        raise RuntimeError("Expected OperationTimeoutError for an operation that never finishes.")
    if fetch.calls != 2 or clock.now != 30.0:
        raise RuntimeError(f"Expected 2 polls and no fetch at the deadline, got {fetch.calls} polls at t={clock.now}")


def test_done_exactly_at_deadline_times_out() -> None:
    clock = FakeClock()
    calls: list[float] = []

    async def done_from_thirty_seconds() -> Operation:
        calls.append(clock.now)
        return Operation(name=OPERATION, done=clock.now >= 30.0, response={"videos": []})

    try:
        asyncio.run(_poll(clock, done_from_thirty_seconds, 30.0))
    except OperationTimeoutError:
        pass
    else:
        raise RuntimeError(f"Completion at T == timeout must time out, fetched at {calls}")
    if calls != [10.0, 20.0]:
        raise RuntimeError(f"No fetch may happen at the deadline instant, fetched at {calls}")


def test_transient_errors_are_tolerated() -> None:
    clock = FakeClock()
    errors = [PollingError("busy", 503, transient=True), PollingError("busy", 503, transient=True)]
    operation, polls = asyncio.run(_poll(clock, ScriptedFetch(done_on=1, errors=errors), 600.0))
    if not operation.done or polls != 1:
        raise RuntimeError(f"Poll should recover after transient errors, got polls={polls}")
    if clock.now != 30.0:
        raise RuntimeError(f"Each failed poll still waits one interval, expected t=30, got {clock.now}")


def test_too_many_transient_errors_raise() -> None:
    clock = FakeClock()
    errors = [PollingError("busy", 503, transient=True) for _ in range(4)]
    try:
        asyncio.run(_poll(clock, ScriptedFetch(done_on=1, errors=errors), 600.0, max_consecutive_errors=3))
    except PollingError as exc:
        if exc.status_code != 503:
            raise RuntimeError(f"Unexpected polling error: {exc}")
    else:
        raise RuntimeError("Expected PollingError after 4 consecutive failures.")


def test_client_error_on_poll_raises_immediately() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch(done_on=1, errors=[PollingError("not found", 404)])
    try:
        asyncio.run(_poll(clock, fetch, 600.0))
    except PollingError:
        pass
    else:
        raise RuntimeError("A 404 on poll must not be retried.")
    if clock.now != 10.0:
        raise RuntimeError(f"Expected to stop after the first poll, clock at {clock.now}")


def test_interval_grows_geometrically_to_ceiling() -> None:
    clock = FakeClock()
    asyncio.run(
        _poll(clock, ScriptedFetch(done_on=5), 600.0, backoff_factor=2.0, max_interval_seconds=25.0)
    )
    if clock.sleeps != [10.0, 20.0, 25.0, 25.0, 25.0]:
        raise RuntimeError(f"Unexpected poll intervals: {clock.sleeps}")


def test_cancellation_stops_polling() -> None:
    clock = FakeClock()

    async def scenario() -> int:
        token = CancellationToken()
        fetch = ScriptedFetch(done_on=None)

        def on_poll(operation: Operation, polls: int) -> None:
            if polls == 2:
                token.cancel("operator stop")

        try:
            await _poll(clock, fetch, 600.0, cancel_token=token, on_poll=on_poll)
        except JobCancelledError as exc:
            if "operator stop" not in str(exc):
                raise RuntimeError(f"Cancellation reason missing: {exc}") from exc
            return fetch.calls
        raise RuntimeError("Expected JobCancelledError after cancellation.")

    calls = asyncio.run(scenario())
    if calls != 2:
        raise RuntimeError(f"Polling continued after cancellation: {calls} polls")


def main() -> int:
    tests = [
        test_done_on_fourth_poll_finishes_at_forty_seconds,
        test_never_done_raises_timeout_at_deadline,
        test_done_exactly_at_deadline_times_out,
        test_transient_errors_are_tolerated,
        test_too_many_transient_errors_raise,
        test_client_error_on_poll_raises_immediately,
        test_interval_grows_geometrically_to_ceiling,
        test_cancellation_stops_polling,
    ]
    for test in tests:
        try:
            test()
        except RuntimeError as exc:
            print(f"polling test failed ({test.__name__}): {exc}", file=sys.stderr)
            return 1
    print(f"polling tests passed ({len(tests)} checks)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
