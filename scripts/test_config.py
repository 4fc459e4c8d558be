from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from genpipeline.config import load_config
from genpipeline.rate_limiter import rate_limiter_from_config


def test_overrides_are_coerced() -> None:
    config = load_config(
        {"output_root": "renders/veo3", "requests_per_window": "4", "max_poll_seconds": "120", "project_id": "p"}
    )
    if config.output_root != Path("renders/veo3") or config.requests_per_window != 4:
        raise RuntimeError(f"Overrides were not coerced: {config.output_root!r} {config.requests_per_window!r}")
    if config.max_poll_seconds != 120.0:
        raise RuntimeError(f"Unexpected max_poll_seconds: {config.max_poll_seconds}")
    limiter = rate_limiter_from_config(config)
    if limiter.max_requests != 4:
        raise RuntimeError("Rate limiter should follow requests_per_window.")


def test_invalid_override_is_rejected() -> None:
    try:
        load_config({"requests_per_window": 0})
    except ValueError:
        return
    raise RuntimeError("requests_per_window=0 should fail validation.")


def test_model_resource_urls() -> None:
    config = load_config({"project_id": "demo", "location": "europe-west4", "api_base": None})
    expected = (
        "https://europe-west4-aiplatform.googleapis.com/v1/projects/demo/locations/europe-west4"
        "/publishers/google/models/veo-3.0-fast-generate-001"
    )
    if config.model_resource("veo-3.0-fast-generate-001") != expected:
        raise RuntimeError(f"Unexpected model resource: {config.model_resource('veo-3.0-fast-generate-001')}")
    custom = load_config({"project_id": "demo", "api_base": "https://proxy.internal/v1/"})
    if not custom.model_resource().startswith("https://proxy.internal/v1/projects/demo/"):
        raise RuntimeError(f"api_base override ignored: {custom.model_resource()}")
    try:
        load_config({"project_id": None}).model_resource()
    except ValueError as exc:
        if "GCP_PROJECT_ID" not in str(exc):
            raise RuntimeError(f"Missing project error should name GCP_PROJECT_ID: {exc}") from exc
        return
    raise RuntimeError("model_resource should fail without a project id.")


def main() -> int:
    tests = [test_overrides_are_coerced, test_invalid_override_is_rejected, test_model_resource_urls]
    for test in tests:
        try:
            test()
        except RuntimeError as exc:
            print(f"config test failed ({test.__name__}): {exc}", file=sys.stderr)
            return 1
    print(f"config tests passed ({len(tests)} checks)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
