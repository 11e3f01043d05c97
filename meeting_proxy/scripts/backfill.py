"""Populates the participation ledger from Zoom's historical meeting reports.

Usage:
    meeting-proxy-backfill --from 2024-01-01 --to 2024-06-30
    meeting-proxy-backfill --dry-run

Re-running the same range is safe: every write is an idempotent upsert.
Reads ZOOM_ADMIN_* and MONGODB_* settings from the environment or .env.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from datetime import date

from meeting_proxy.core.config import get_settings
from meeting_proxy.services.backfill_service import DEFAULT_BACKFILL_DAYS, BackfillService
from meeting_proxy.services.errors import ProxyError

logger = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="meeting-proxy-backfill",
        description="Backfill meeting participation from Zoom report APIs.",
    )
    parser.add_argument(
        "--from",
        dest="from_date",
        type=_parse_date,
        help=f"Start date YYYY-MM-DD (default: {DEFAULT_BACKFILL_DAYS} days ago)",
    )
    parser.add_argument("--to", dest="to_date", type=_parse_date, help="End date YYYY-MM-DD (default: today)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Perform every read but skip ledger writes",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = build_parser().parse_args(argv)
    if args.from_date and args.to_date and args.from_date > args.to_date:
        logger.error("--from must not be after --to")
        return 2

    try:
        report = BackfillService(get_settings()).run(
            from_date=args.from_date,
            to_date=args.to_date,
            dry_run=args.dry_run,
        )
    except ProxyError as exc:
        logger.error("Backfill aborted code=%s error=%s", exc.code, exc.message)
        return 1

    logger.info("Backfill report %s", report.model_dump_json())
    return 1 if report.failed_users else 0


if __name__ == "__main__":
    sys.exit(main())
