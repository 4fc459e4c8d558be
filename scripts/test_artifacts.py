from __future__ import annotations

import base64
import sys
import tempfile
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pydantic import ValidationError

from genpipeline.artifacts import (
    decode_base64_payload,
    hash_file,
    storage_download_url,
    unique_artifact_path,
    write_artifact_bytes,
    write_item_log,
    write_sidecar,
)
from genpipeline.errors import MaterializationError


def test_repeated_writes_are_byte_identical() -> None:
    payload = decode_base64_payload(base64.b64encode(b"\x00\x00\x00\x18ftypmp42" * 64).decode("ascii"))
    with tempfile.TemporaryDirectory() as tmp:
        target = Path(tmp) / "clip.mp4"
        write_artifact_bytes(target, payload)
        first_hash = hash_file(target)
        write_artifact_bytes(target, payload)
        if hash_file(target) != first_hash or target.read_bytes() != payload:
            raise RuntimeError("Second write changed the artifact.")
        leftovers = [path.name for path in Path(tmp).iterdir() if path.name != "clip.mp4"]
        if leftovers:
            raise RuntimeError(f"Temporary files left behind: {leftovers}")


def test_invalid_base64_is_materialization_error() -> None:
    for bad in ("not base64!!", ""):
        try:
            decode_base64_payload(bad)
        except MaterializationError:
            continue
        raise RuntimeError(f"Expected MaterializationError for payload {bad!r}")


def test_artifact_paths_do_not_collide() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        paths = {unique_artifact_path(Path(tmp), "veo3_video", 0) for _ in range(200)}
        if len(paths) != 200:
            raise RuntimeError(f"Generated {200 - len(paths)} colliding artifact paths.")
        sample = next(iter(paths))
        if not sample.name.startswith("veo3_video_") or sample.suffix != ".mp4":
            raise RuntimeError(f"Unexpected artifact name: {sample.name}")


def test_storage_uris_map_to_download_urls() -> None:
    url = storage_download_url("gs://bucket-a/renders/op 1/sample_0.mp4")
    expected = "https://storage.googleapis.com/storage/v1/b/bucket-a/o/renders%2Fop%201%2Fsample_0.mp4?alt=media"
    if url != expected:
        raise RuntimeError(f"Unexpected storage URL: {url}")
    if storage_download_url("https://cdn.example/video.mp4") != "https://cdn.example/video.mp4":
        raise RuntimeError("HTTP URIs should pass through unchanged.")
    for bad in ("gs://bucket-only", "ftp://host/file.mp4"):
        try:
            storage_download_url(bad)
        except MaterializationError:
            continue
        raise RuntimeError(f"Expected MaterializationError for {bad}")


def test_item_log_schema_rejects_unknown_fields() -> None:
    entry = {
        "run_id": "r",
        "index": 0,
        "name": "item_000",
        "model_id": "veo-3.0-generate-preview",
        "started_at": "2026-01-01T00:00:00+00:00",
        "ended_at": "2026-01-01T00:00:40+00:00",
        "generation_time_sec": 40.0,
        "prompt_full_text": "prompt",
        "request": {},
        "operation_name": None,
        "attempts": 1,
        "polls": 4,
        "state": "COMPLETED",
        "artifacts": [],
        "cost_usd": 1.2,
        "warnings": [],
        "status": "success",
        "error": None,
        "error_kind": None,
    }
    with tempfile.TemporaryDirectory() as tmp:
        write_item_log(Path(tmp) / "log_000.json", entry)
        try:
            write_item_log(Path(tmp) / "log_001.json", {**entry, "unexpected": True})
        except ValidationError:
            return
    raise RuntimeError("Item log accepted an unknown field.")


def test_sidecar_write_errors_are_materialization_errors() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        blocker = Path(tmp) / "not_a_dir"
        blocker.write_text("", encoding="utf-8")
        try:
            write_sidecar(blocker / "clip.mp4", {"success": True})
        except MaterializationError as exc:
            if "sidecar" not in str(exc):
                raise RuntimeError(f"Sidecar error should name the sidecar: {exc}") from exc
            return
    raise RuntimeError("Unwritable sidecar path should raise MaterializationError.")


def main() -> int:
    tests = [
        test_repeated_writes_are_byte_identical,
        test_invalid_base64_is_materialization_error,
        test_artifact_paths_do_not_collide,
        test_storage_uris_map_to_download_urls,
        test_item_log_schema_rejects_unknown_fields,
        test_sidecar_write_errors_are_materialization_errors,
    ]
    for test in tests:
        try:
            test()
        except RuntimeError as exc:
            print(f"artifact test failed ({test.__name__}): {exc}", file=sys.stderr)
            return 1
    print(f"artifact tests passed ({len(tests)} checks)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
