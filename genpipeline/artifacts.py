from __future__ import annotations

import base64
import binascii
import hashlib
import itertools
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from .errors import MaterializationError
from .output_schema import BatchReportSchema, ItemLogSchema
from .utils import ensure_dir, write_json

_FILENAME_COUNTER = itertools.count()
STORAGE_DOWNLOAD_BASE = "https://storage.googleapis.com/storage/v1"


@dataclass(frozen=True)
class RunPaths:
    run_dir: Path
    artifacts_dir: Path
    logs_dir: Path


def prepare_run_directories(output_root: Path, run_id: str) -> RunPaths:
    run_dir = ensure_dir(output_root / run_id)
    return RunPaths(
        run_dir=run_dir,
        artifacts_dir=ensure_dir(run_dir / "artifacts"),
        logs_dir=ensure_dir(run_dir / "logs"),
    )


def unique_artifact_path(output_dir: Path, prefix: str, index: int, suffix: str = ".mp4") -> Path:
    """Timestamp + index + process counter + random token, so concurrent writers never collide."""
    stamp = int(time.time() * 1000)
    token = f"{next(_FILENAME_COUNTER):04d}{uuid.uuid4().hex[:6]}"
    return output_dir / f"{prefix}_{stamp}_{index}_{token}{suffix}"


def hash_file(path: Path, chunk_size: int = 1024 * 1024) -> str | None:
    if not path.exists() or not path.is_file():
        return None
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def decode_base64_payload(data: str) -> bytes:
    try:
        payload = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MaterializationError(f"Inline artifact payload is not valid base64: {exc}") from exc
    if not payload:
        raise MaterializationError("Inline artifact payload decoded to zero bytes.")
    return payload


def write_artifact_bytes(path: Path, payload: bytes) -> Path:
    """Write through a temp file and rename, so a reader never sees a partial artifact."""
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_bytes(payload)
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise MaterializationError(f"Failed to write artifact {path}: {exc}") from exc
    return path


def storage_download_url(uri: str) -> str:
    if uri.startswith("gs://"):
        bucket, _, object_name = uri[len("gs://") :].partition("/")
        if not bucket or not object_name:
            raise MaterializationError(f"Malformed Cloud Storage URI: {uri}")
        return f"{STORAGE_DOWNLOAD_BASE}/b/{bucket}/o/{quote(object_name, safe='')}?alt=media"
    if uri.startswith(("http://", "https://")):
        return uri
    raise MaterializationError(f"Unsupported artifact URI scheme: {uri}")


async def download_artifact(
    client: httpx.AsyncClient,
    uri: str,
    path: Path,
    *,
    token: str | None = None,
) -> Path:
    url = storage_download_url(uri)
    headers = {"Authorization": f"Bearer {token}"} if token and uri.startswith("gs://") else {}
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with client.stream("GET", url, headers=headers) as response:
            if response.status_code >= 400:
                await response.aread()
                raise MaterializationError(
                    f"Download of {uri} failed: HTTP {response.status_code} {response.text[:200]}"
                )
            with tmp_path.open("wb") as handle:
                async for chunk in response.aiter_bytes():
                    handle.write(chunk)
        if tmp_path.stat().st_size == 0:
            raise MaterializationError(f"Download of {uri} returned an empty body.")
        os.replace(tmp_path, path)
    except httpx.HTTPError as exc:
        raise MaterializationError(f"Download of {uri} failed: {exc}") from exc
    except OSError as exc:
        raise MaterializationError(f"Failed to write artifact {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    return path


def write_sidecar(artifact_path: Path, payload: dict[str, Any]) -> Path:
    sidecar_path = artifact_path.with_suffix(".json")
    try:
        write_json(sidecar_path, payload)
    except (OSError, TypeError, ValueError) as exc:
        raise MaterializationError(f"Failed to write sidecar {sidecar_path}: {exc}") from exc
    return sidecar_path


def write_item_log(path: Path, payload: dict[str, Any]) -> None:
    validated = ItemLogSchema.model_validate(payload)
    write_json(path, validated.model_dump(mode="json"))


def write_report(run_dir: Path, payload: dict[str, Any]) -> Path:
    validated = BatchReportSchema.model_validate(payload)
    report_path = run_dir / "report.json"
    write_json(report_path, validated.model_dump(mode="json"))
    return report_path
