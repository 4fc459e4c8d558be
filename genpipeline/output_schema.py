from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

JobStateLiteral = Literal["PENDING", "SUBMITTED", "POLLING", "COMPLETED", "FAILED", "TIMED_OUT", "CANCELLED"]


class ArtifactSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    index: int
    url: str | None
    duration_seconds: float
    quality: str
    mime_type: str | None
    sha256: str | None
    size_bytes: int | None


class ItemLogSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: str
    index: int
    name: str
    model_id: str
    started_at: str
    ended_at: str
    generation_time_sec: float
    prompt_full_text: str
    request: dict[str, Any]
    operation_name: str | None
    attempts: int
    polls: int
    state: JobStateLiteral
    artifacts: list[ArtifactSchema]
    cost_usd: float
    warnings: list[str]
    status: Literal["success", "failed", "skipped"]
    error: str | None
    error_kind: str | None


class RateLimiterSnapshotSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requests_in_window: int
    consecutive_failures: int
    next_slot_in_seconds: float
    max_requests: int
    window_seconds: float


class ReportItemSummarySchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: int
    name: str
    success: bool
    state: JobStateLiteral
    output_paths: list[str]
    operation_name: str | None
    attempts: int
    generation_time_sec: float
    cost_usd: float
    warnings: list[str]
    error: str | None
    error_kind: str | None


class BatchReportSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_id: str
    created_at: str
    batch_path: str
    batch_sha256: str
    model_id: str
    git_commit: str
    dry_run: bool
    planned_items: int
    successful: int
    failed: int
    skipped: int
    success_rate: float
    total_cost_usd: float
    total_runtime_sec: float
    rate_limiter: RateLimiterSnapshotSchema
    items: list[ReportItemSummarySchema]
    status: Literal["completed", "partial", "failed", "aborted_user"]
    error: str | None
