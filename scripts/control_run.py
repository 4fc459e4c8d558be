from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def apply_control_action(status_dir: Path, action: str) -> None:
    status_dir.mkdir(parents=True, exist_ok=True)
    if action == "pause":
        (status_dir / "PAUSE").touch()
        (status_dir / "STOP").unlink(missing_ok=True)
    elif action == "resume":
        (status_dir / "PAUSE").unlink(missing_ok=True)
        (status_dir / "STOP").unlink(missing_ok=True)
    elif action == "stop":
        (status_dir / "STOP").touch()
    else:
        raise ValueError(f"Unsupported action: {action}")
    (status_dir / "control.json").write_text(json.dumps({"action": action}), encoding="utf-8")


def main() -> int:
    parser = argparse.ArgumentParser(description="Pause, resume or stop a running batch.")
    parser.add_argument("--run-dir", type=Path, default=None, help="Run directory (contains status/).")
    parser.add_argument("--run-id", default=None, help="Run id under --output-root.")
    parser.add_argument("--output-root", type=Path, default=Path("generated/veo3"))
    parser.add_argument("--pause", action="store_true")
    parser.add_argument("--resume", action="store_true")
    parser.add_argument("--stop", action="store_true")
    args = parser.parse_args()

    actions = [name for name, enabled in [("pause", args.pause), ("resume", args.resume), ("stop", args.stop)] if enabled]
    if len(actions) != 1:
        print("Choose exactly one action: --pause, --resume, or --stop", file=sys.stderr)
        return 1
    if args.run_dir is None and args.run_id is None:
        print("Provide --run-dir or --run-id.", file=sys.stderr)
        return 1

    run_dir = args.run_dir or (args.output_root / args.run_id)
    if not run_dir.exists():
        print(f"Run directory not found: {run_dir}", file=sys.stderr)
        return 1

    status_dir = run_dir / "status"
    apply_control_action(status_dir, actions[0])
    print(f"Control action '{actions[0]}' written to {status_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
