from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from .utils import utc_now_iso


@dataclass(frozen=True)
class PhaseEvent:
    """One step of a generate() call, handed to the caller instead of printed."""

    stage: str
    state: str
    message: str
    attempt: int = 0
    operation_name: str | None = None
    tag: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "timestamp": self.timestamp,
            "stage": self.stage,
            "state": self.state,
            "message": self.message,
            "attempt": self.attempt,
            "operation_name": self.operation_name,
            "tag": self.tag,
        }
        payload.update(self.extra)
        return payload


def format_event_line(prefix: str, payload: dict[str, Any]) -> str:
    return f"{prefix}:{json.dumps(payload, sort_keys=True, default=str)}"


class ProgressTracker:
    def __init__(self, run_dir: Path, *, stream: TextIO | None = None) -> None:
        self.run_dir = run_dir
        self.status_dir = run_dir / "status"
        self.status_path = self.status_dir / "status.json"
        self.log_path = self.status_dir / "progress.log"
        # When set, every event is mirrored as a PROGRESS:{json} line for a parent process.
        self.stream = stream

    def update(
        self,
        item_index: int | None,
        stage: str,
        percent: float,
        message: str,
        extra: dict | None = None,
    ) -> dict:
        event = {
            "timestamp": utc_now_iso(),
            "item_index": item_index,
            "stage": stage,
            "percent": round(max(0.0, min(100.0, percent)), 2),
            "message": message,
        }
        if extra:
            event.update(extra)
        self._write_status_atomic(event)
        self._append_progress_line(event)
        if self.stream is not None:
            print(format_event_line("PROGRESS", event), file=self.stream, flush=True)
        return event

    def phase(self, item_index: int | None, percent: float, event: PhaseEvent) -> dict:
        extra = {key: value for key, value in event.to_dict().items() if key not in {"timestamp", "stage", "message"}}
        return self.update(item_index, event.stage, percent, event.message, extra=extra)

    def _write_status_atomic(self, event: dict) -> None:
        self.status_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.status_path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(event, indent=2, sort_keys=True, default=str), encoding="utf-8")
        last_error: Exception | None = None
        for attempt in range(10):
            try:
                os.replace(tmp_path, self.status_path)
                return
            except PermissionError as exc:
                last_error = exc
                # Windows can transiently lock files while scanners/indexers read them.
                time.sleep(0.05 * (attempt + 1))
        if last_error is not None:
            raise last_error

    def _append_progress_line(self, event: dict) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        item_value = event["item_index"] if event["item_index"] is not None else "-"
        operation_part = ""
        if event.get("operation_name"):
            operation_part = f" | operation={event['operation_name']}"
        line = f"{event['timestamp']} | {event['stage']} | item={item_value} | msg={event['message']}{operation_part}\n"
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(line)
