from __future__ import annotations

import time
from typing import Callable

from .errors import OperationTimeoutError


class OperationDeadline:
    """Wall-clock budget for one operation, started at submission time."""

    def __init__(self, budget_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.budget_seconds = float(budget_seconds)
        self._clock = clock
        self.started = clock()

    def elapsed(self) -> float:
        return self._clock() - self.started

    def remaining(self) -> float:
        return self.budget_seconds - self.elapsed()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation_name: str | None = None) -> float:
        elapsed = self.elapsed()
        if elapsed >= self.budget_seconds:
            raise OperationTimeoutError(
                f"Operation {operation_name or '<unknown>'} did not finish within {self.budget_seconds:.0f}s "
                f"(elapsed {elapsed:.2f}s); it may still be running remotely.",
                operation_name=operation_name,
            )
        return elapsed
