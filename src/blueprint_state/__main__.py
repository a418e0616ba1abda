"""Entry point for `python -m blueprint_state` and the `blueprint-state` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from blueprint_state.document_store import read_document
from blueprint_state.hooks import configure_logging, handle_activity, handle_finalize, load_settings, run_hook
from blueprint_state.lifecycle import LifecycleEngine
from blueprint_state.models import ALL_KINDS
from blueprint_state.root import find_project_root
from blueprint_state.settings import VALID_LOG_LEVELS, RuntimeSettings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="blueprint-state",
        description="Track PDCA cycle, pipeline run and gap analysis lifecycles across hook invocations",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=sorted(VALID_LOG_LEVELS),
        help="Logging verbosity (default: BLUEPRINT_LOG_LEVEL or WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser(
        "activity",
        help="Post-tool-use hook: read the payload on stdin and touch active cycles and pipeline runs",
    )
    subparsers.add_parser(
        "finalize",
        help="Session-stop hook: read the payload on stdin and suspend everything still active",
    )
    inspect_parser = subparsers.add_parser("inspect", help="Print tracked documents grouped by status")
    inspect_parser.add_argument(
        "--cwd",
        type=Path,
        default=None,
        help="Directory to resolve the project from (default: current directory)",
    )
    return parser.parse_args(argv)


def inspect_state(start_dir: Path, settings: RuntimeSettings) -> dict[str, Any]:
    """Summarize the tracked documents visible from *start_dir* without taking locks or creating anything."""
    project_root = find_project_root(start_dir, dir_name=settings.state_dir_name) or start_dir.absolute()
    state_root = project_root / settings.state_dir_name
    engine = LifecycleEngine(state_root, settings=settings)

    documents: dict[str, dict[str, int]] = {}
    for kind in ALL_KINDS:
        statuses: Counter[str] = Counter()
        for path in engine.documents(kind):
            document = read_document(path)
            statuses["<unreadable>" if document is None else str(document.get("status"))] += 1
        documents[kind.value] = dict(sorted(statuses.items()))

    return {
        "stateRoot": str(state_root),
        "documents": documents,
        "lastSuspension": read_document(engine.summary_path),
    }


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    start_dir = (args.cwd or Path.cwd()) if args.command == "inspect" else None
    settings = load_settings(start_dir)
    if args.log_level is not None:
        settings = replace(settings, log_level=args.log_level)
    configure_logging(settings)

    if args.command == "activity":
        return run_hook(
            handle_activity,
            hook_name="phase-tracker",
            input_timeout_ms=settings.activity_input_timeout_ms,
        )
    if args.command == "finalize":
        return run_hook(
            handle_finalize,
            hook_name="cycle-finalize",
            input_timeout_ms=settings.finalize_input_timeout_ms,
        )

    try:
        report = inspect_state(start_dir, settings)
    except OSError as exc:
        logging.error("Unable to inspect state under %s: %s", start_dir, exc)
        return 1
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
