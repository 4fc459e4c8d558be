from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

from providers import get_endpoint
from providers.base import Artifact, GenerationResult, JobState, ModelEndpoint, Operation

from .artifacts import (
    decode_base64_payload,
    download_artifact,
    hash_file,
    unique_artifact_path,
    write_artifact_bytes,
    write_sidecar,
)
from .auth import TokenProvider, token_provider_from_config
from .config import PipelineConfig, load_config
from .errors import (
    AuthError,
    GenerationError,
    GenerationPipelineError,
    JobCancelledError,
    MaterializationError,
    OperationTimeoutError,
    PollingError,
    PromptRenderError,
    SubmissionError,
    classify_status,
    rate_limiter_failure_kind,
)
from .job_schema import GenerationRequest
from .polling import CancellationToken, poll_until_done, sleep_or_cancel
from .progress import PhaseEvent
from .prompting import hook_variations, render_prompt, segment_prompt
from .rate_limiter import RateLimiter, RateLimiterStatus, rate_limiter_from_config
from .timeouts import OperationDeadline
from .utils import ensure_dir

LOGGER = logging.getLogger(__name__)

EventCallback = Callable[[PhaseEvent], None]

PLATFORM_SETTINGS: dict[str, dict[str, Any]] = {
    "tiktok": {"aspect_ratio": "9:16", "duration_seconds": 8, "generate_audio": True, "video_count": 2},
    "youtube": {"aspect_ratio": "16:9", "duration_seconds": 8, "generate_audio": True, "video_count": 1},
    "instagram": {"aspect_ratio": "1:1", "duration_seconds": 6, "generate_audio": True, "video_count": 2},
}


def platform_settings(platform: str) -> dict[str, Any]:
    key = platform.strip().lower()
    if key not in PLATFORM_SETTINGS:
        valid = ", ".join(sorted(PLATFORM_SETTINGS))
        raise ValueError(f"Unknown platform '{platform}'. Valid platforms: {valid}")
    return dict(PLATFORM_SETTINGS[key])


def _render_request_prompt(request: GenerationRequest) -> str:
    try:
        return render_prompt(
            request.prompt,
            enhance=request.enhance_prompt,
            duration_seconds=request.duration_seconds,
            aspect_ratio=request.aspect_ratio,
            resolution=request.resolution,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise PromptRenderError(f"Prompt could not be rendered: {exc}") from exc


def _error_body(response: httpx.Response) -> str:
    return response.text[:2000]


def _json_payload(response: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


@dataclass
class _JobRun:
    request: GenerationRequest
    prompt_text: str
    tag: str | None
    state: JobState = JobState.PENDING
    attempts: int = 0
    polls: int = 0
    operation_name: str | None = None
    warnings: list[str] = field(default_factory=list)


class AsyncJobClient:
    """
    Drives one remote long-running generation job per ``generate()`` call.

    Phases run strictly in order: acquire a rate-limiter slot, authenticate,
    submit, poll until done or the deadline passes, then materialize the
    outputs locally. Only transient submission failures re-run the attempt.
    ``generate()`` always returns a ``GenerationResult``; pipeline failures are
    reported through ``success``, ``error`` and ``error_kind``.
    """

    def __init__(
        self,
        config: PipelineConfig,
        rate_limiter: RateLimiter,
        token_provider: TokenProvider,
        endpoint: ModelEndpoint,
        *,
        http_client: httpx.AsyncClient | None = None,
        output_dir: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_event: EventCallback | None = None,
    ) -> None:
        self.config = config
        self.rate_limiter = rate_limiter
        self.token_provider = token_provider
        self.endpoint = endpoint
        self.output_dir = Path(output_dir) if output_dir is not None else Path(config.output_root)
        self.on_event = on_event
        self._clock = clock
        self._sleep = sleep
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.http_timeout_seconds))

    async def __aenter__(self) -> "AsyncJobClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _emit(self, run: _JobRun | None, stage: str, message: str, *, attempt: int = 0, **extra: Any) -> None:
        if self.on_event is None:
            return
        self.on_event(
            PhaseEvent(
                stage=stage,
                state=(run.state.value if run is not None else JobState.PENDING.value),
                message=message,
                attempt=attempt,
                operation_name=run.operation_name if run is not None else None,
                tag=run.tag if run is not None else None,
                extra=extra,
            )
        )

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json; charset=utf-8"}

    async def generate(
        self,
        request: GenerationRequest,
        cancel_token: CancellationToken | None = None,
        *,
        tag: str | None = None,
    ) -> GenerationResult:
        started = self._clock()
        run = _JobRun(request=request, prompt_text="", tag=tag)
        self._emit(run, "queued", f"Generating {request.video_count} video(s) with {self.endpoint.model_id}")

        try:
            run.prompt_text = _render_request_prompt(request)
            artifacts = await self._run_with_retries(run, cancel_token)
        except GenerationPipelineError as exc:
            return self._failed_result(run, exc, started)

        run.state = JobState.COMPLETED
        generation_time = self._clock() - started
        metadata: dict[str, Any] = {
            "model_id": self.endpoint.model_id,
            "model_tier": request.model_tier,
            "generation_time_sec": round(generation_time, 3),
            "cost_usd": round(self.endpoint.cost_per_sample(request) * len(artifacts), 2),
            "artifact_count": len(artifacts),
            "polls": run.polls,
            "prompt_enhanced": request.enhance_prompt and isinstance(request.prompt, str),
        }
        result = GenerationResult(
            success=True,
            state=run.state,
            prompt=run.prompt_text,
            artifacts=tuple(artifacts),
            warnings=tuple(run.warnings),
            operation_name=run.operation_name,
            attempts=run.attempts,
            metadata=metadata,
        )
        if self.config.write_sidecar and artifacts:
            try:
                sidecar = write_sidecar(artifacts[0].path, result.to_dict())
            except MaterializationError as exc:
                LOGGER.warning("%s", exc)
                result = replace(result, warnings=result.warnings + (str(exc),))
            else:
                result.metadata["sidecar_path"] = sidecar.as_posix()
        self._emit(
            run,
            "complete",
            f"Generated {len(artifacts)} video(s) in {generation_time:.1f}s",
            attempt=run.attempts,
            paths=[artifact.path.as_posix() for artifact in artifacts],
        )
        return result

    def _failed_result(self, run: _JobRun, exc: GenerationPipelineError, started: float) -> GenerationResult:
        if isinstance(exc, OperationTimeoutError):
            run.state = JobState.TIMED_OUT
        elif isinstance(exc, JobCancelledError):
            run.state = JobState.CANCELLED
        else:
            run.state = JobState.FAILED
        generation_time = self._clock() - started
        LOGGER.error("Generation failed (%s) after %d attempt(s): %s", exc.kind, run.attempts, exc)
        self._emit(run, "failed", str(exc), attempt=run.attempts, error_kind=exc.kind)
        return GenerationResult(
            success=False,
            state=run.state,
            prompt=run.prompt_text,
            error=str(exc),
            error_kind=exc.kind,
            warnings=tuple(run.warnings),
            operation_name=run.operation_name,
            attempts=run.attempts,
            metadata={
                "model_id": self.endpoint.model_id,
                "model_tier": run.request.model_tier,
                "generation_time_sec": round(generation_time, 3),
                "cost_usd": 0.0,
                "artifact_count": 0,
                "polls": run.polls,
                "vendor_error": getattr(exc, "vendor_error", None),
            },
        )

    async def _run_with_retries(self, run: _JobRun, cancel_token: CancellationToken | None) -> list[Artifact]:
        max_attempts = self.config.max_attempts
        attempt = 0
        while True:
            attempt += 1
            run.attempts = attempt
            try:
                return await self._attempt(run, attempt, cancel_token)
            except SubmissionError as exc:
                if not exc.transient or attempt >= max_attempts:
                    raise
                delay = min(
                    self.config.retry_delay_seconds * (2 ** (attempt - 1)),
                    self.config.max_retry_delay_seconds,
                )
                LOGGER.warning(
                    "Attempt %d/%d failed with transient error (%s); retrying in %.1fs",
                    attempt,
                    max_attempts,
                    exc,
                    delay,
                )
                self._emit(run, "retry", f"Transient submission failure: {exc}", attempt=attempt, delay_seconds=delay)
                await sleep_or_cancel(delay, self._sleep, cancel_token)

    async def _acquire_slot(self, cancel_token: CancellationToken | None) -> None:
        if cancel_token is None:
            await self.rate_limiter.acquire()
            return
        cancel_token.raise_if_cancelled("before rate limiter")
        acquirer = asyncio.ensure_future(self.rate_limiter.acquire())
        waiter = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({acquirer, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not acquirer.done():
                acquirer.cancel()
            await asyncio.gather(acquirer, waiter, return_exceptions=True)
        if acquirer.cancelled() or acquirer.exception() is not None:
            cancel_token.raise_if_cancelled("waiting for rate limiter")
            acquirer.result()

    async def _attempt(self, run: _JobRun, attempt: int, cancel_token: CancellationToken | None) -> list[Artifact]:
        request = run.request
        run.state = JobState.PENDING
        run.operation_name = None
        self._emit(run, "rate_limit", "Waiting for rate limiter slot", attempt=attempt)
        await self._acquire_slot(cancel_token)

        try:
            token = await self.token_provider.get_token()
            body, warnings = self.endpoint.build_body(run.prompt_text, request)
            run.warnings = list(warnings)
            run.operation_name = await self._submit(token, body, request.model_tier)
            run.state = JobState.SUBMITTED
            LOGGER.info("Operation started: %s", run.operation_name)
            self._emit(run, "submit", "Operation submitted", attempt=attempt)

            deadline = OperationDeadline(self.config.max_poll_seconds, self._clock)
            run.state = JobState.POLLING
            operation_name = run.operation_name

            def on_poll(operation: Operation, polls: int) -> None:
                run.polls += 1
                self._emit(
                    run,
                    "poll",
                    "Operation done" if operation.done else "Operation still running",
                    attempt=attempt,
                    poll=polls,
                    elapsed_seconds=round(deadline.elapsed(), 3),
                )

            async def fetch() -> Operation:
                return await self._fetch(operation_name, request.model_tier)

            operation, _ = await poll_until_done(
                fetch,
                operation_name=operation_name,
                deadline=deadline,
                interval_seconds=self.config.poll_interval_seconds,
                sleep=self._sleep,
                backoff_factor=self.config.poll_backoff_factor,
                max_interval_seconds=self.config.max_poll_interval_seconds,
                max_consecutive_errors=self.config.max_poll_errors,
                cancel_token=cancel_token,
                on_poll=on_poll,
            )
            artifacts = await self._materialize(run, operation, attempt)
        except GenerationPipelineError as exc:
            self.rate_limiter.report_failure(rate_limiter_failure_kind(exc))
            if isinstance(exc, JobCancelledError) and run.operation_name:
                await self._cancel_remote(run.operation_name)
            raise
        self.rate_limiter.report_success()
        return artifacts

    async def _submit(self, token: str, body: dict[str, Any], tier: str) -> str:
        try:
            url = self.endpoint.submit_url(tier)
        except ValueError as exc:
            raise SubmissionError(str(exc), submission_kind="client") from exc
        try:
            response = await self._http.post(url, json=body, headers=self._headers(token))
        except httpx.TransportError as exc:
            raise SubmissionError(f"Submission transport failure: {exc}", submission_kind="transient") from exc

        if response.status_code in {401, 403}:
            raise AuthError(f"Submission rejected credentials: HTTP {response.status_code} {_error_body(response)[:200]}")
        if response.status_code >= 400:
            raise SubmissionError(
                f"VEO3 API request failed: {response.status_code} - {_error_body(response)[:200]}",
                submission_kind=classify_status(response.status_code),
                status_code=response.status_code,
                body=_error_body(response),
            )
        payload = _json_payload(response)
        if not payload or not payload.get("name"):
            raise SubmissionError(
                "Submission response did not include an operation name.",
                submission_kind="client",
                status_code=response.status_code,
                body=_error_body(response),
            )
        return str(payload["name"])

    async def _fetch(self, operation_name: str, tier: str) -> Operation:
        token = await self.token_provider.get_token()
        try:
            response = await self._http.post(
                self.endpoint.fetch_url(tier),
                json=self.endpoint.fetch_body(operation_name),
                headers=self._headers(token),
            )
        except httpx.TransportError as exc:
            raise PollingError(f"Poll transport failure for {operation_name}: {exc}", transient=True) from exc
        if response.status_code >= 400:
            # Only 408/429/5xx poll failures are tolerated; other 4xx end the job.
            raise PollingError(
                f"Operation status check failed: {response.status_code} - {_error_body(response)[:200]}",
                response.status_code,
                transient=classify_status(response.status_code) == "transient",
            )
        payload = _json_payload(response)
        if payload is None:
            raise PollingError(f"Operation status for {operation_name} was not a JSON object.", response.status_code)
        return Operation.from_payload(payload, fallback_name=operation_name)

    async def _materialize(self, run: _JobRun, operation: Operation, attempt: int) -> list[Artifact]:
        if operation.error:
            message = operation.error.get("message") or "unknown vendor error"
            raise GenerationError(f"VEO3 generation failed: {message}", vendor_error=operation.error)
        outputs = self.endpoint.extract_outputs(operation)
        if not outputs:
            reasons = self.endpoint.filtered_reasons(operation)
            if reasons:
                raise GenerationError(
                    f"All videos were filtered by content policy: {'; '.join(reasons)}",
                    vendor_error=operation.response,
                )
            raise GenerationError("Operation completed without any videos.", vendor_error=operation.response)

        self._emit(run, "materialize", f"Writing {len(outputs)} video(s)", attempt=attempt)
        try:
            output_dir = ensure_dir(self.output_dir)
        except OSError as exc:
            raise MaterializationError(f"Cannot create output directory {self.output_dir}: {exc}") from exc
        request = run.request
        artifacts: list[Artifact] = []
        written: list[Path] = []
        try:
            for output in outputs:
                path = unique_artifact_path(output_dir, self.config.artifact_prefix, output.index)
                if output.data_base64:
                    write_artifact_bytes(path, decode_base64_payload(output.data_base64))
                elif output.uri:
                    token = await self.token_provider.get_token()
                    await download_artifact(self._http, output.uri, path, token=token)
                else:
                    raise MaterializationError(f"Output {output.index} has neither inline data nor a URI.")
                written.append(path)
                artifacts.append(
                    Artifact(
                        path=path,
                        index=output.index,
                        duration_seconds=float(request.duration_seconds),
                        quality=self.endpoint.quality_label(request),
                        url=output.uri,
                        mime_type=output.mime_type,
                        sha256=hash_file(path),
                        size_bytes=path.stat().st_size,
                    )
                )
                LOGGER.info("Video saved to: %s", path)
        except (GenerationPipelineError, OSError) as exc:
            # All or nothing: outputs already written are removed.
            for partial in written:
                partial.unlink(missing_ok=True)
            if isinstance(exc, OSError):
                raise MaterializationError(f"Failed to finalize artifacts in {output_dir}: {exc}") from exc
            raise
        return artifacts

    async def _cancel_remote(self, operation_name: str) -> None:
        url = self.endpoint.cancel_url(operation_name) if self.endpoint.supports_cancel else None
        if url is None:
            LOGGER.info("Stopped waiting for %s; the remote job may still be running.", operation_name)
            return
        try:
            token = await self.token_provider.get_token()
            response = await self._http.post(url, headers=self._headers(token))
        except (httpx.HTTPError, GenerationPipelineError) as exc:
            LOGGER.warning("Best-effort cancel of %s failed: %s", operation_name, exc)
            return
        if response.status_code >= 400:
            LOGGER.warning("Best-effort cancel of %s returned HTTP %d", operation_name, response.status_code)

    async def generate_sequence(
        self,
        base_prompt: str | dict[str, Any],
        scenes: list[str],
        *,
        first_frame: Path | None = None,
        aspect_ratio: str = "16:9",
        duration_seconds: int = 8,
        preserve_character: bool = True,
        cancel_token: CancellationToken | None = None,
        **request_fields: Any,
    ) -> list[GenerationResult]:
        """One single-video request per scene, run in order. Only the first scene gets the reference frame."""
        results: list[GenerationResult] = []
        for index, scene in enumerate(scenes):
            prompt = segment_prompt(
                base_prompt,
                scene,
                index,
                duration_seconds=duration_seconds,
                aspect_ratio=aspect_ratio,
                preserve_character=preserve_character,
            )
            request = GenerationRequest(
                **{
                    **request_fields,
                    "prompt": prompt,
                    "duration_seconds": duration_seconds,
                    "aspect_ratio": aspect_ratio,
                    "first_frame": first_frame if index == 0 else None,
                    "video_count": 1,
                }
            )
            results.append(await self.generate(request, cancel_token, tag=f"segment-{index + 1}"))
        return results

    async def generate_variations(
        self,
        request: GenerationRequest,
        count: int = 3,
        cancel_token: CancellationToken | None = None,
    ) -> list[GenerationResult]:
        """Hook A/B variations: same request, different opening beat."""
        results: list[GenerationResult] = []
        for index, variation in enumerate(hook_variations(request.prompt, count, request.duration_seconds), start=1):
            variant_request = GenerationRequest.model_validate({**request.model_dump(), "prompt": variation})
            results.append(await self.generate(variant_request, cancel_token, tag=f"hook-{index}"))
        return results

    async def test_connection(self) -> bool:
        try:
            token = await self.token_provider.get_token()
            response = await self._http.get(self.endpoint.model_url(), headers=self._headers(token))
        except (GenerationPipelineError, httpx.HTTPError, ValueError) as exc:
            LOGGER.warning("VEO3 connection test failed: %s", exc)
            return False
        # The model resource may not be readable; 404 still proves auth and routing work.
        reachable = 200 <= response.status_code < 300 or response.status_code == 404
        if not reachable:
            LOGGER.warning("VEO3 connection test got HTTP %d", response.status_code)
        return reachable

    def rate_limiter_status(self) -> RateLimiterStatus:
        return self.rate_limiter.status()

    def estimate_cost(self, request: GenerationRequest) -> float:
        return round(self.endpoint.cost_per_sample(request) * request.video_count, 2)

    @staticmethod
    def platform_settings(platform: str) -> dict[str, Any]:
        return platform_settings(platform)


class Veo3Client(AsyncJobClient):
    """AsyncJobClient wired for VEO3 from environment configuration."""

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        token_provider: TokenProvider | None = None,
        model_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        config = config or load_config()
        super().__init__(
            config,
            rate_limiter or rate_limiter_from_config(config),
            token_provider or token_provider_from_config(config),
            get_endpoint(model_id or config.model_id, config),
            **kwargs,
        )
