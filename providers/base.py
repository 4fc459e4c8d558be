from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class JobState(str, enum.Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in {JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED}


@dataclass(frozen=True)
class Operation:
    name: str
    done: bool = False
    error: dict[str, Any] | None = None
    response: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], fallback_name: str | None = None) -> "Operation":
        name = payload.get("name") or fallback_name
        if not name:
            raise ValueError("Operation payload has no 'name'.")
        error = payload.get("error")
        response = payload.get("response")
        return cls(
            name=str(name),
            done=bool(payload.get("done", False)),
            error=error if isinstance(error, dict) else ({"message": str(error)} if error else None),
            response=response if isinstance(response, dict) else None,
        )


@dataclass(frozen=True)
class RemoteOutput:
    index: int
    uri: str | None
    data_base64: str | None
    mime_type: str | None = None


@dataclass(frozen=True)
class Artifact:
    path: Path
    index: int
    duration_seconds: float
    quality: str
    url: str | None = None
    mime_type: str | None = None
    sha256: str | None = None
    size_bytes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path.as_posix(),
            "index": self.index,
            "url": self.url,
            "duration_seconds": self.duration_seconds,
            "quality": self.quality,
            "mime_type": self.mime_type,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    state: JobState
    prompt: str
    artifacts: tuple[Artifact, ...] = ()
    error: str | None = None
    error_kind: str | None = None
    warnings: tuple[str, ...] = ()
    operation_name: str | None = None
    attempts: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def paths(self) -> list[Path]:
        return [artifact.path for artifact in self.artifacts]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "prompt": self.prompt,
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
            "error": self.error,
            "error_kind": self.error_kind,
            "warnings": list(self.warnings),
            "operation_name": self.operation_name,
            "attempts": self.attempts,
            "metadata": dict(self.metadata),
        }


class ModelEndpoint:
    """Describes how one remote model is addressed and how its payloads are shaped."""

    supports_cancel = False

    def __init__(self, model_id: str, config: Any) -> None:
        self.model_id = model_id
        self.config = config

    def model_url(self, tier: str = "fast") -> str:
        raise NotImplementedError

    def submit_url(self, tier: str = "fast") -> str:
        raise NotImplementedError

    def fetch_url(self, tier: str = "fast") -> str:
        raise NotImplementedError

    def cancel_url(self, operation_name: str) -> str | None:
        return None

    def build_body(self, prompt_text: str, request: Any) -> tuple[dict[str, Any], list[str]]:
        raise NotImplementedError

    def fetch_body(self, operation_name: str) -> dict[str, Any]:
        return {"operationName": operation_name}

    def extract_outputs(self, operation: Operation) -> list[RemoteOutput]:
        raise NotImplementedError

    def filtered_reasons(self, operation: Operation) -> list[str]:
        return []

    def cost_per_sample(self, request: Any) -> float:
        return 0.0

    def quality_label(self, request: Any) -> str:
        return str(getattr(request, "resolution", "unknown"))
