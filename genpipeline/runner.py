from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from providers import get_endpoint
from providers.base import GenerationResult
from providers.mock import MockVertexService

from .artifacts import hash_file, prepare_run_directories, write_item_log, write_report
from .auth import StaticTokenProvider, token_provider_from_config
from .client import AsyncJobClient
from .config import PipelineConfig, load_config
from .job_schema import BatchSpec
from .polling import CancellationToken
from .progress import PhaseEvent, ProgressTracker
from .rate_limiter import rate_limiter_from_config
from .utils import (
    apply_batch_overrides,
    generate_run_id,
    get_git_commit,
    load_batch_document,
    parse_overrides,
    utc_now_iso,
)

LOGGER = logging.getLogger(__name__)

CONTROL_POLL_SECONDS = 1.0
PAUSE_POLL_SECONDS = 2.0
DRY_RUN_PROJECT_ID = "dry-run-project"
DRY_RUN_POLL_SECONDS = 0.01


def read_control_action(status_dir: Path) -> str | None:
    if (status_dir / "STOP").exists():
        return "stop"

    action: str | None = None
    control_json = status_dir / "control.json"
    if control_json.exists():
        try:
            payload = json.loads(control_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("action"), str):
            action = payload["action"].strip().lower()

    if action == "stop":
        return "stop"
    if (status_dir / "PAUSE").exists() or action == "pause":
        return "pause"
    return action


async def watch_control_files(
    status_dir: Path,
    cancel_token: CancellationToken,
    progress: ProgressTracker,
    *,
    interval_seconds: float = CONTROL_POLL_SECONDS,
) -> None:
    while not cancel_token.cancelled:
        if read_control_action(status_dir) == "stop":
            cancel_token.cancel("User requested stop")
            progress.update(None, "stop_requested", 100.0, "Stop requested; cancelling remaining items.")
            return
        await asyncio.sleep(interval_seconds)


async def _pause_gate(
    status_dir: Path,
    progress: ProgressTracker,
    cancel_token: CancellationToken,
    item_index: int,
    percent: float,
) -> None:
    paused_logged = False
    while read_control_action(status_dir) == "pause" and not cancel_token.cancelled:
        if not paused_logged:
            progress.update(item_index, "paused", percent, f"Paused by user (before item {item_index}).")
            paused_logged = True
        await asyncio.sleep(PAUSE_POLL_SECONDS)
    if paused_logged:
        progress.update(item_index, "resumed", percent, f"Resumed (before item {item_index}).")


def _display_path(path: Path, base: Path) -> str:
    resolved = path.resolve()
    try:
        return resolved.relative_to(base.resolve()).as_posix()
    except ValueError:
        return resolved.as_posix()


def _empty_item_log(*, run_id: str, index: int, name: str, model_id: str, started_at: str) -> dict[str, Any]:
    return {
        "run_id": run_id,
        "index": index,
        "name": name,
        "model_id": model_id,
        "started_at": started_at,
        "ended_at": started_at,
        "generation_time_sec": 0.0,
        "prompt_full_text": "",
        "request": {},
        "operation_name": None,
        "attempts": 0,
        "polls": 0,
        "state": "PENDING",
        "artifacts": [],
        "cost_usd": 0.0,
        "warnings": [],
        "status": "failed",
        "error": None,
        "error_kind": None,
    }


def _item_summary(log_entry: dict[str, Any]) -> dict[str, Any]:
    return {
        "index": log_entry["index"],
        "name": log_entry["name"],
        "success": log_entry["status"] == "success",
        "state": log_entry["state"],
        "output_paths": [artifact["path"] for artifact in log_entry["artifacts"]],
        "operation_name": log_entry["operation_name"],
        "attempts": log_entry["attempts"],
        "generation_time_sec": log_entry["generation_time_sec"],
        "cost_usd": log_entry["cost_usd"],
        "warnings": log_entry["warnings"],
        "error": log_entry["error"],
        "error_kind": log_entry["error_kind"],
    }


def _apply_result(log_entry: dict[str, Any], result: GenerationResult, run_dir: Path) -> None:
    artifacts = []
    for artifact in result.artifacts:
        payload = artifact.to_dict()
        payload["path"] = _display_path(artifact.path, run_dir)
        artifacts.append(payload)
    log_entry.update(
        {
            "ended_at": utc_now_iso(),
            "generation_time_sec": float(result.metadata.get("generation_time_sec", 0.0)),
            "prompt_full_text": result.prompt,
            "operation_name": result.operation_name,
            "attempts": result.attempts,
            "polls": int(result.metadata.get("polls", 0)),
            "state": result.state.value,
            "artifacts": artifacts,
            "cost_usd": float(result.metadata.get("cost_usd", 0.0)),
            "warnings": list(result.warnings),
            "status": "success" if result.success else "failed",
            "error": result.error,
            "error_kind": result.error_kind,
        }
    )


def item_tag(index: int, name: str) -> str:
    """Event tag for one batch item; the index prefix keeps duplicate names apart."""
    return f"{index:03d}:{name}"


def batch_status(*, successful: int, failed: int, aborted: bool) -> str:
    if aborted:
        return "aborted_user"
    if failed == 0:
        return "completed"
    if successful == 0:
        return "failed"
    return "partial"


def success_rate(successful: int, planned: int) -> float:
    if planned <= 0:
        return 0.0
    return round(successful / planned * 100.0, 2)


def dry_run_config(config: PipelineConfig) -> PipelineConfig:
    return config.model_copy(
        update={
            "project_id": config.project_id or DRY_RUN_PROJECT_ID,
            "api_base": "https://mock-vertex.local/v1",
            "poll_interval_seconds": DRY_RUN_POLL_SECONDS,
            "retry_delay_seconds": 0.0,
            "window_seconds": 1.0,
        }
    )


async def run_batch_async(
    batch_path: str | Path,
    overrides: dict[str, Any] | None = None,
    *,
    client: AsyncJobClient | None = None,
    progress_stream: Any = None,
    control_poll_seconds: float = CONTROL_POLL_SECONDS,
) -> Path:
    """
    Run every item of a batch file through one client and write ``report.json``.

    Failed items never stop the batch. A ``STOP`` file or ``control.json`` with
    ``{"action": "stop"}`` in ``<run>/status`` cancels waiting items and stops
    polling for in-flight ones.
    """
    batch_path = Path(batch_path).resolve()
    raw_batch = load_batch_document(batch_path)
    config_overrides = apply_batch_overrides(raw_batch, overrides)

    batch = BatchSpec.model_validate(raw_batch)
    config = load_config(config_overrides)
    if batch.dry_run:
        config = dry_run_config(config)

    run_id = batch.run_id or generate_run_id(batch.batch_name)
    output_root = batch.output_root if batch.output_root else config.output_root
    if not output_root.is_absolute():
        output_root = (Path.cwd() / output_root).resolve()
    run_paths = prepare_run_directories(output_root, run_id)
    progress = ProgressTracker(run_paths.run_dir, stream=progress_stream)

    planned = batch.planned_item_count
    item_tags = [item_tag(index, batch.item_name(index)) for index in range(planned)]
    tag_indexes = {tag: index for index, tag in enumerate(item_tags)}
    finished = 0

    def on_event(event: PhaseEvent) -> None:
        progress.phase(tag_indexes.get(event.tag or ""), finished / planned * 100.0, event)

    owned_http: httpx.AsyncClient | None = None
    owns_client = client is None
    if client is None:
        if batch.dry_run:
            service = MockVertexService()
            owned_http = httpx.AsyncClient(transport=service.transport())
            token_provider = StaticTokenProvider("dry-run-token")
        else:
            token_provider = token_provider_from_config(config)
        client = AsyncJobClient(
            config,
            rate_limiter_from_config(config),
            token_provider,
            get_endpoint(batch.model.id, config),
            http_client=owned_http,
            output_dir=run_paths.artifacts_dir,
            on_event=on_event,
        )
    elif client.on_event is None:
        client.on_event = on_event

    report: dict[str, Any] = {
        "run_id": run_id,
        "created_at": utc_now_iso(),
        "batch_path": batch_path.as_posix(),
        "batch_sha256": hash_file(batch_path) or "",
        "model_id": client.endpoint.model_id,
        "git_commit": get_git_commit(),
        "dry_run": batch.dry_run,
        "planned_items": planned,
    }
    progress.update(None, "init", 0.0, f"Run initialized with model '{client.endpoint.model_id}' ({planned} items).")
    LOGGER.info("Batch %s: %d item(s), concurrency %d", run_id, planned, batch.max_concurrency)

    cancel_token = CancellationToken()
    semaphore = asyncio.Semaphore(batch.max_concurrency)
    run_started = time.monotonic()

    async def run_item(index: int) -> dict[str, Any]:
        nonlocal finished
        name = batch.item_name(index)
        log_entry = _empty_item_log(
            run_id=run_id, index=index, name=name, model_id=client.endpoint.model_id, started_at=utc_now_iso()
        )
        log_path = run_paths.logs_dir / f"log_{index:03d}.json"
        async with semaphore:
            await _pause_gate(progress.status_dir, progress, cancel_token, index, finished / planned * 100.0)
            if cancel_token.cancelled:
                log_entry.update(
                    {"state": "CANCELLED", "status": "skipped", "error": cancel_token.reason, "error_kind": "cancelled"}
                )
            else:
                log_entry["started_at"] = utc_now_iso()
                try:
                    request = batch.build_request(index, batch_path.parent)
                except ValidationError as exc:
                    log_entry.update(
                        {
                            "state": "FAILED",
                            "request": batch.items[index].model_dump(mode="json"),
                            "error": f"Invalid request: {exc.errors()[0].get('msg', exc)}",
                            "error_kind": "validation",
                        }
                    )
                else:
                    log_entry["request"] = request.model_dump(mode="json")
                    progress.update(index, "item_start", finished / planned * 100.0, f"Generating item {name}")
                    try:
                        result = await client.generate(request, cancel_token, tag=item_tags[index])
                        _apply_result(log_entry, result, run_paths.run_dir)
                    except Exception as exc:
                        LOGGER.exception("Item %s failed unexpectedly", name)
                        log_entry.update(
                            {
                                "state": "FAILED",
                                "status": "failed",
                                "error": f"{type(exc).__name__}: {exc}",
                                "error_kind": "internal",
                            }
                        )
        log_entry["ended_at"] = utc_now_iso()
        write_item_log(log_path, log_entry)
        finished += 1
        progress.update(
            index,
            f"item_{log_entry['status']}",
            finished / planned * 100.0,
            log_entry["error"] or f"Item {name} finished",
        )
        return _item_summary(log_entry)

    watcher = asyncio.ensure_future(
        watch_control_files(progress.status_dir, cancel_token, progress, interval_seconds=control_poll_seconds)
    )
    try:
        summaries = await asyncio.gather(*(run_item(index) for index in range(planned)))
    except Exception as exc:
        report.update(
            {
                "successful": 0,
                "failed": planned,
                "skipped": 0,
                "success_rate": 0.0,
                "total_cost_usd": 0.0,
                "total_runtime_sec": max(0.0, time.monotonic() - run_started),
                "rate_limiter": client.rate_limiter_status().to_dict(),
                "items": [],
                "status": "failed",
                "error": str(exc),
            }
        )
        write_report(run_paths.run_dir, report)
        progress.update(None, "failed", 100.0, str(exc))
        raise
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)
        if owns_client:
            await client.aclose()
        if owned_http is not None:
            await owned_http.aclose()

    successful = sum(1 for item in summaries if item["success"])
    skipped = sum(1 for item in summaries if item["state"] == "CANCELLED" and not item["attempts"])
    failed = planned - successful - skipped
    status = batch_status(successful=successful, failed=failed, aborted=cancel_token.cancelled)
    report.update(
        {
            "successful": successful,
            "failed": failed,
            "skipped": skipped,
            "success_rate": success_rate(successful, planned),
            "total_cost_usd": round(sum(item["cost_usd"] for item in summaries), 2),
            "total_runtime_sec": max(0.0, time.monotonic() - run_started),
            "rate_limiter": client.rate_limiter_status().to_dict(),
            "items": summaries,
            "status": status,
            "error": cancel_token.reason if cancel_token.cancelled else None,
        }
    )
    write_report(run_paths.run_dir, report)
    progress.update(
        None,
        "complete",
        100.0,
        f"Batch {status}: {successful}/{planned} succeeded ({report['success_rate']:.1f}%).",
        extra={"status": status, "total_cost_usd": report["total_cost_usd"]},
    )
    return run_paths.run_dir


def run_batch(batch_path: str | Path, overrides: dict[str, Any] | None = None, **kwargs: Any) -> Path:
    return asyncio.run(run_batch_async(batch_path, overrides, **kwargs))


def cli_main() -> int:
    parser = argparse.ArgumentParser(description="Run a batch of VEO3 generation requests.")
    parser.add_argument("batch", type=Path, help="Batch file (.yaml/.yml/.json).")
    parser.add_argument(
        "--set",
        action="append",
        default=[],
        help="Override field with KEY=VALUE. Use config.KEY for environment config fields.",
    )
    parser.add_argument("--events", action="store_true", help="Print PROGRESS:{json} lines to stdout.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    overrides = parse_overrides(args.set)
    run_dir = run_batch(args.batch, overrides=overrides, progress_stream=sys.stdout if args.events else None)
    report = json.loads((run_dir / "report.json").read_text(encoding="utf-8"))
    print(f"Run finished: {run_dir} ({report['status']}, {report['successful']}/{report['planned_items']} succeeded)")
    return 0 if report["status"] == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(cli_main())
