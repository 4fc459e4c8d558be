from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import httpx

from genpipeline.auth import StaticTokenProvider
from genpipeline.client import AsyncJobClient
from genpipeline.config import PipelineConfig
from genpipeline.rate_limiter import RateLimiter
from providers import get_endpoint
from providers.mock import MockVertexService

TEST_TOKEN = "test-token"


class FakeClock:
    """Shared virtual time: ``sleep`` advances the clock instantly and yields once."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, float(seconds))
        await asyncio.sleep(0)


def make_config(output_root: Path, **overrides: Any) -> PipelineConfig:
    values: dict[str, Any] = {
        "project_id": "test-project",
        "location": "us-central1",
        "api_base": "https://vertex.test/v1",
        "access_token": TEST_TOKEN,
        "credentials_path": None,
        "model_id": "veo-3.0-generate-preview",
        "output_root": output_root,
        "poll_interval_seconds": 10.0,
        "max_poll_seconds": 600.0,
        "max_attempts": 3,
        "retry_delay_seconds": 5.0,
        "write_sidecar": False,
    }
    values.update(overrides)
    return PipelineConfig(**values)


def make_client(
    output_dir: Path,
    service: MockVertexService,
    clock: FakeClock,
    *,
    rate_limiter: RateLimiter | None = None,
    on_event: Any = None,
    **config_overrides: Any,
) -> AsyncJobClient:
    config = make_config(output_dir, **config_overrides)
    limiter = rate_limiter or RateLimiter(10, 60.0, clock=clock, sleep=clock.sleep)
    return AsyncJobClient(
        config,
        limiter,
        StaticTokenProvider(TEST_TOKEN),
        get_endpoint(config.model_id, config),
        http_client=httpx.AsyncClient(transport=service.transport()),
        output_dir=output_dir,
        clock=clock,
        sleep=clock.sleep,
        on_event=on_event,
    )


def max_in_window(stamps: list[float], window_seconds: float) -> int:
    """Largest number of timestamps inside any half-open window (t - window, t]."""
    ordered = sorted(stamps)
    best = 0
    for end in ordered:
        best = max(best, sum(1 for stamp in ordered if end - window_seconds < stamp <= end))
    return best
