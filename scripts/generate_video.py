from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import httpx

from genpipeline.auth import StaticTokenProvider
from genpipeline.client import Veo3Client, platform_settings
from genpipeline.config import load_config
from genpipeline.job_schema import GenerationRequest
from genpipeline.progress import PhaseEvent, format_event_line
from genpipeline.runner import dry_run_config
from providers.mock import MockVertexService


def _build_request(args: argparse.Namespace) -> GenerationRequest:
    prompt: str | dict[str, Any]
    if args.prompt_file is not None:
        prompt = json.loads(args.prompt_file.read_text(encoding="utf-8"))
    else:
        prompt = args.prompt
    fields: dict[str, Any] = platform_settings(args.platform) if args.platform else {}
    explicit = {
        "duration_seconds": args.duration,
        "aspect_ratio": args.aspect_ratio,
        "video_count": args.count,
        "first_frame": args.first_frame,
        "last_frame": args.last_frame,
        "model_tier": args.tier,
        "resolution": args.resolution,
        "seed": args.seed,
        "negative_prompt": args.negative_prompt,
    }
    fields.update({key: value for key, value in explicit.items() if value is not None})
    if args.no_audio:
        fields["generate_audio"] = False
    return GenerationRequest(prompt=prompt, enhance_prompt=args.enhance, **fields)


async def _run(args: argparse.Namespace) -> int:
    config = load_config({"output_root": str(args.out)} if args.out else None)

    def on_event(event: PhaseEvent) -> None:
        if args.events:
            print(format_event_line("PROGRESS", event.to_dict()), flush=True)

    kwargs: dict[str, Any] = {"on_event": on_event}
    mock_http: httpx.AsyncClient | None = None
    if args.dry_run:
        config = dry_run_config(config)
        mock_http = httpx.AsyncClient(transport=MockVertexService().transport())
        kwargs.update({"http_client": mock_http, "token_provider": StaticTokenProvider("dry-run-token")})

    try:
        async with Veo3Client(config, model_id=args.model, **kwargs) as client:
            if args.test_connection:
                ok = await client.test_connection()
                print(format_event_line("RESULT", {"success": ok, "connection": ok}))
                return 0 if ok else 1

            request = _build_request(args)
            if not args.events:
                print(f"Estimated cost: ${client.estimate_cost(request):.2f}", file=sys.stderr)
            if args.variations:
                results = await client.generate_variations(request, args.variations)
            else:
                results = [await client.generate(request)]
    finally:
        if mock_http is not None:
            await mock_http.aclose()

    for result in results:
        print(format_event_line("RESULT", result.to_dict()), flush=True)
    return 0 if all(result.success for result in results) else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate one VEO3 video request.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt", help="Free-text prompt.")
    source.add_argument("--prompt-file", type=Path, help="Structured JSON prompt file.")
    source.add_argument("--test-connection", action="store_true", help="Only check auth and endpoint reachability.")
    parser.add_argument("--model", default=None, help="Model id or alias (default: VEO3_MODEL).")
    parser.add_argument("--platform", choices=["tiktok", "youtube", "instagram"], default=None)
    parser.add_argument("--duration", type=int, choices=[4, 6, 8], default=None)
    parser.add_argument("--aspect-ratio", choices=["16:9", "9:16", "1:1"], default=None)
    parser.add_argument("--count", type=int, default=None, help="Videos per request (1-4).")
    parser.add_argument("--first-frame", type=Path, default=None)
    parser.add_argument("--last-frame", type=Path, default=None)
    parser.add_argument("--tier", choices=["fast", "standard"], default=None)
    parser.add_argument("--resolution", choices=["720p", "1080p"], default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--negative-prompt", default=None)
    parser.add_argument("--no-audio", action="store_true")
    parser.add_argument("--enhance", action="store_true", help="Expand free text into a structured prompt.")
    parser.add_argument("--variations", type=int, default=0, help="Generate N hook variations instead of one video.")
    parser.add_argument("--out", type=Path, default=None, help="Output directory (default: VEO3_OUTPUT_PATH).")
    parser.add_argument("--events", action="store_true", help="Print PROGRESS:{json} lines to stdout.")
    parser.add_argument("--dry-run", action="store_true", help="Use the in-process mock Vertex service.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING if args.events else logging.INFO, stream=sys.stderr)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
