from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_MODEL_ID = "veo-3.0-generate-preview"
DEFAULT_POLL_INTERVAL_SECONDS = 10.0
MAX_POLL_SECONDS = 10 * 60


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_optional(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


class PipelineConfig(BaseModel):
    project_id: str | None = Field(default_factory=lambda: _env_optional("GCP_PROJECT_ID"))
    location: str = Field(default_factory=lambda: os.getenv("GCP_LOCATION", "us-central1"))
    credentials_path: Path | None = Field(
        default_factory=lambda: Path(os.environ["GOOGLE_APPLICATION_CREDENTIALS"])
        if _env_optional("GOOGLE_APPLICATION_CREDENTIALS")
        else None
    )
    access_token: str | None = Field(default_factory=lambda: _env_optional("VERTEX_ACCESS_TOKEN"))
    api_base: str | None = Field(default_factory=lambda: _env_optional("VERTEX_API_BASE"))
    model_id: str = Field(default_factory=lambda: os.getenv("VEO3_MODEL", DEFAULT_MODEL_ID))
    output_root: Path = Field(default_factory=lambda: Path(os.getenv("VEO3_OUTPUT_PATH", "generated/veo3")))

    requests_per_window: int = Field(
        default_factory=lambda: int(os.getenv("VEO3_REQUESTS_PER_MINUTE", "10")), gt=0
    )
    window_seconds: float = Field(default=60.0, gt=0)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_exponent_base: float = Field(default=2.0, ge=1)
    max_backoff_seconds: float = Field(default=60.0, ge=0)

    poll_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("VEO3_POLL_INTERVAL_SECONDS", str(DEFAULT_POLL_INTERVAL_SECONDS))),
        gt=0,
    )
    poll_backoff_factor: float = Field(default=1.0, ge=1)
    max_poll_interval_seconds: float = Field(default=60.0, gt=0)
    max_poll_seconds: float = Field(
        default_factory=lambda: float(os.getenv("VEO3_MAX_POLL_SECONDS", str(MAX_POLL_SECONDS))), gt=0
    )
    max_poll_errors: int = Field(default=3, ge=0)

    max_attempts: int = Field(default_factory=lambda: int(os.getenv("VEO3_MAX_ATTEMPTS", "3")), ge=1)
    retry_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("VEO3_RETRY_DELAY_SECONDS", "5")), ge=0
    )
    max_retry_delay_seconds: float = Field(default=60.0, ge=0)

    http_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("VEO3_HTTP_TIMEOUT_SECONDS", "60")), gt=0
    )
    write_sidecar: bool = Field(default_factory=lambda: _env_bool("VEO3_WRITE_SIDECAR", True))
    artifact_prefix: str = "veo3_video"

    def resolved_api_base(self) -> str:
        if self.api_base:
            return self.api_base.rstrip("/")
        return f"https://{self.location}-aiplatform.googleapis.com/v1"

    def model_resource(self, model_id: str | None = None) -> str:
        if not self.project_id:
            raise ValueError("GCP_PROJECT_ID environment variable is required for VEO3.")
        return (
            f"{self.resolved_api_base()}/projects/{self.project_id}/locations/{self.location}"
            f"/publishers/google/models/{model_id or self.model_id}"
        )


def load_config(overrides: dict | None = None) -> PipelineConfig:
    config = PipelineConfig()
    if overrides:
        # Re-validate so string overrides from the CLI are coerced (paths, numbers).
        config = PipelineConfig.model_validate({**config.model_dump(), **overrides})
    return config
