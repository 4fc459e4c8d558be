from __future__ import annotations

import json
import os
import re
import subprocess
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import yaml

CONFIG_OVERRIDE_PREFIX = "config."
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def generate_run_id(batch_name: str) -> str:
    """``<slug>-<UTC stamp>-<4 hex>``; the suffix keeps same-second runs of one batch apart."""
    slug = _SLUG_SEPARATORS.sub("-", batch_name.strip().lower()).strip("-") or "batch"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{slug}-{stamp}-{uuid.uuid4().hex[:4]}"


def load_batch_document(path: Path) -> dict[str, Any]:
    suffix = path.suffix.lower()
    if suffix not in {".yaml", ".yml", ".json"}:
        raise ValueError(f"Unsupported batch format: {path.suffix}. Use .yaml/.yml or .json.")
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if suffix == ".json" else yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"Batch file must contain a mapping at its root: {path}")
    return data


def write_json(path: Path, data: dict[str, Any]) -> None:
    """Serialize first, then swap the file into place so readers never see half a document."""
    text = json.dumps(data, indent=2, sort_keys=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def parse_overrides(pairs: Iterable[str]) -> dict[str, Any]:
    """``KEY=VALUE`` pairs from ``--set``; values are read as YAML scalars (``3``, ``true``, ``null``, ``[1, 2]``)."""
    parsed: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw_value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid override '{pair}'. Expected KEY=VALUE.")
        raw_value = raw_value.strip()
        try:
            parsed[key] = yaml.safe_load(raw_value) if raw_value else ""
        except yaml.YAMLError:
            parsed[key] = raw_value
    return parsed


def split_overrides(overrides: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Route ``config.*`` keys to the pipeline config and everything else to the batch file."""
    config_overrides: dict[str, Any] = {}
    batch_overrides: dict[str, Any] = {}
    for key, value in overrides.items():
        if key.startswith(CONFIG_OVERRIDE_PREFIX):
            config_overrides[key[len(CONFIG_OVERRIDE_PREFIX) :]] = value
        else:
            batch_overrides[key] = value
    return config_overrides, batch_overrides


def apply_batch_overrides(raw_batch: dict[str, Any], overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Write dotted batch overrides into ``raw_batch`` in place and return the ``config.*`` ones."""
    if not overrides:
        return {}
    config_overrides, batch_overrides = split_overrides(overrides)
    for dotted_key, value in batch_overrides.items():
        *parents, leaf = dotted_key.split(".")
        cursor = raw_batch
        for key in parents:
            if not isinstance(cursor.get(key), dict):
                cursor[key] = {}
            cursor = cursor[key]
        cursor[leaf] = value
    return config_overrides


def get_git_commit(cwd: Path | None = None) -> str:
    try:
        output = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=cwd or Path(__file__).resolve().parent,
            stderr=subprocess.DEVNULL,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return output.strip() or "unknown"
