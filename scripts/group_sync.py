"""Run the HR advisor group synchronization once.

This module serves as a CLI wrapper around hrsync.core.sync_service and is
meant to be invoked by a scheduler (cron, Kubernetes CronJob, ...).
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from hrsync.config import load_settings
from hrsync.core.exceptions import SyncError
from hrsync.core.sync_service import run_group_sync

EXIT_OK = 0
EXIT_SYNC_ERROR = 1
EXIT_CONFIG_ERROR = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure root logging on stderr so stdout stays free for --json."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Synchronize HR advisor roles with Entra ID group membership")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", dest="dry_run", action="store_true", default=None,
                      help="Report changes without applying them (overrides DRY_RUN)")
    mode.add_argument("--apply", dest="dry_run", action="store_false",
                      help="Apply changes (overrides DRY_RUN)")
    parser.add_argument("--group-id", action="append", dest="group_ids", metavar="ID",
                        help="Directory group id; repeat for several groups (overrides HR_ADVISOR_GROUP_IDS)")
    parser.add_argument("--operator", default="scheduler",
                        help="Operator identifier for audit logs (default: scheduler)")
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON on stdout")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_settings(group_ids=args.group_ids)
    except (RuntimeError, ValueError) as e:
        print(f"[group-sync] Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        report = run_group_sync(config, dry_run=args.dry_run, operator=args.operator)
    except SyncError as e:
        print(f"[group-sync] {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_SYNC_ERROR

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
