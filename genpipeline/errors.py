from __future__ import annotations

from typing import Any, Literal

SubmissionKind = Literal["client", "transient"]


class GenerationPipelineError(RuntimeError):
    kind = "pipeline"


class AuthError(GenerationPipelineError):
    kind = "auth"


class SubmissionError(GenerationPipelineError):
    kind = "submission"

    def __init__(
        self,
        message: str,
        *,
        submission_kind: SubmissionKind,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.submission_kind = submission_kind
        self.status_code = status_code
        self.body = body

    @property
    def transient(self) -> bool:
        return self.submission_kind == "transient"


class GenerationError(GenerationPipelineError):
    """The remote operation finished but reported a failure."""

    kind = "generation"

    def __init__(self, message: str, vendor_error: Any = None) -> None:
        super().__init__(message)
        self.vendor_error = vendor_error


class OperationTimeoutError(GenerationPipelineError, TimeoutError):
    """Polling exceeded its wall-clock budget. The remote job may still be running."""

    kind = "timeout"

    def __init__(self, message: str, operation_name: str | None = None) -> None:
        super().__init__(message)
        self.operation_name = operation_name


class PollingError(GenerationPipelineError):
    kind = "polling"

    def __init__(self, message: str, status_code: int | None = None, *, transient: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class PromptRenderError(GenerationPipelineError):
    """A structured prompt could not be turned into request text. Never retried."""

    kind = "validation"


class MaterializationError(GenerationPipelineError):
    kind = "materialization"


class JobCancelledError(GenerationPipelineError):
    kind = "cancelled"


def classify_status(status_code: int) -> SubmissionKind:
    if status_code in {408, 429} or status_code >= 500:
        return "transient"
    return "client"


def rate_limiter_failure_kind(exc: BaseException) -> str:
    status_code = getattr(exc, "status_code", None)
    if status_code == 429:
        return "rate_limited"
    if status_code in {502, 503, 504}:
        return "unavailable"
    if isinstance(exc, TimeoutError):
        return "timeout"
    return "other"
