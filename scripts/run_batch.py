from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from genpipeline.runner import run_batch
from genpipeline.utils import parse_overrides


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a VEO3 batch file.")
    parser.add_argument("batch_positional", nargs="?", type=Path, help="Path to batch YAML/JSON.")
    parser.add_argument("--batch", type=Path, default=None, help="Path to batch YAML/JSON.")
    parser.add_argument("--out", type=Path, default=None, help="Override output root directory.")
    parser.add_argument("--run-id", type=str, default=None, help="Explicit run_id override.")
    parser.add_argument("--dry-run", action="store_true", help="Use the in-process mock Vertex service.")
    parser.add_argument("--set", action="append", default=[], help="Override with KEY=VALUE.")
    parser.add_argument("--events", action="store_true", help="Print PROGRESS:{json} lines to stdout.")
    args = parser.parse_args()

    batch_path = args.batch or args.batch_positional
    if batch_path is None:
        parser.error("Provide a batch via positional path or --batch.")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    overrides = parse_overrides(args.set)
    if args.out is not None:
        overrides["output_root"] = str(args.out)
    if args.run_id is not None:
        overrides["run_id"] = args.run_id
    if args.dry_run:
        overrides["dry_run"] = True

    run_dir = run_batch(batch_path, overrides=overrides, progress_stream=sys.stdout if args.events else None)
    report = json.loads((run_dir / "report.json").read_text(encoding="utf-8"))
    print(
        f"Run {report['status']}: {run_dir} "
        f"({report['successful']}/{report['planned_items']} succeeded, ${report['total_cost_usd']:.2f})"
    )
    return 0 if report["status"] == "completed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
