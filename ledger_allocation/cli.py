"""
ledger-allocate -- command line shell around AllocationOrchestrator.

Usage:
    ledger-allocate --database-url URL init-db
    ledger-allocate --database-url URL run FILE_ID [--resume] [--max-attempts N]
                                                   [--actor-id UUID] [--progress]
    ledger-allocate --database-url URL stats FILE_ID
    ledger-allocate --database-url URL reset-failed FILE_ID

The database URL defaults to $LEDGER_DATABASE_URL.  Settings come from
--config, else $LEDGER_ALLOCATION_CONFIG, else built-in defaults.  Results
are printed to stdout as JSON; logs go to stderr.

Exit codes: 0 success, 1 error, 2 usage error, 3 allocation not complete.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Sequence
from uuid import UUID

from ledger_config import get_allocation_settings
from ledger_kernel.db.engine import create_tables, get_session, init_engine_from_url
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import get_logger

from ledger_allocation.domain.rate import ProgressRateEstimator
from ledger_allocation.domain.types import AllocationProgress
from ledger_allocation.orchestrator import AllocationOrchestrator

logger = get_logger("allocation.cli")

DATABASE_URL_ENV_VAR = "LEDGER_DATABASE_URL"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INCOMPLETE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-allocate",
        description="Allocate parsed payment files to the debtor ledger.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get(DATABASE_URL_ENV_VAR),
        help=f"SQLAlchemy database URL (default: ${DATABASE_URL_ENV_VAR})",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML file with an 'allocation:' section",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the ledger tables")

    run = sub.add_parser("run", help="Allocate a payment file")
    run.add_argument("file_id", type=UUID)
    run.add_argument(
        "--resume",
        action="store_true",
        help="Start from the file's stored checkpoint instead of offset 0",
    )
    run.add_argument("--max-attempts", type=int, default=None)
    run.add_argument(
        "--actor-id",
        type=UUID,
        default=None,
        help="Acting user id, required to open a new week's payment history",
    )
    run.add_argument(
        "--progress",
        action="store_true",
        help="Print every progress snapshot as a JSON line",
    )

    stats = sub.add_parser("stats", help="Show allocation statistics")
    stats.add_argument("file_id", type=UUID)

    reset = sub.add_parser("reset-failed", help="Re-queue failed records")
    reset.add_argument("file_id", type=UUID)

    return parser


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, default=str))


def _progress_printer(total_records: int):
    """Print each snapshot with its processing rate and ETA."""
    estimator = ProgressRateEstimator(total_records)
    last = time.monotonic()

    def on_progress(snapshot: AllocationProgress) -> None:
        nonlocal last
        now = time.monotonic()
        estimate = estimator.update(snapshot.total_processed, max(now - last, 1e-6))
        last = now
        _print_json({
            "progress": snapshot.to_dict(),
            "records_per_second": round(estimate.records_per_second, 1),
            "eta": estimate.eta_text,
        })

    return on_progress


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.database_url:
        parser.error(f"--database-url or ${DATABASE_URL_ENV_VAR} is required")

    try:
        settings = get_allocation_settings(args.config)
    except (OSError, ValueError) as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    init_engine_from_url(args.database_url)

    if args.command == "init-db":
        create_tables()
        _print_json({"tables_created": True})
        return EXIT_OK

    session = get_session()
    try:
        actor_id = getattr(args, "actor_id", None)
        orchestrator = AllocationOrchestrator.from_session(
            session,
            settings=settings,
            actor_resolver=lambda: actor_id,
        )

        if args.command == "run":
            on_progress = None
            if args.progress:
                on_progress = _progress_printer(
                    orchestrator.allocation_stats(args.file_id).pending.count
                )

            progress = orchestrator.process_large_payment_file(
                args.file_id,
                on_progress=on_progress,
                max_attempts=args.max_attempts,
                resume_from_checkpoint=args.resume,
            )
            _print_json({"result": progress.to_dict()})
            return EXIT_OK if progress.is_complete else EXIT_INCOMPLETE

        if args.command == "stats":
            _print_json(orchestrator.allocation_stats(args.file_id).to_dict())
            return EXIT_OK

        if args.command == "reset-failed":
            count = orchestrator.reset_failed_records(args.file_id)
            _print_json({"payment_file_id": str(args.file_id), "records_reset": count})
            return EXIT_OK
    except LedgerKernelError as exc:
        logger.error("cli_command_failed", extra={"command": args.command, "code": exc.code})
        print(
            json.dumps({"error": {"code": exc.code, "message": str(exc)}}),
            file=sys.stderr,
        )
        return EXIT_ERROR
    finally:
        session.close()

    parser.error(f"unknown command {args.command}")
    return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
