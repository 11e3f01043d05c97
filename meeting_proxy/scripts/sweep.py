"""Deletes participation records older than RETENTION_DAYS."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from meeting_proxy.core.config import get_settings
from meeting_proxy.services.errors import ProxyError
from meeting_proxy.services.retention_service import RetentionSweeper

logger = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    argparse.ArgumentParser(
        prog="meeting-proxy-sweep",
        description="Delete participation records past the retention window.",
    ).parse_args(argv)

    try:
        result = RetentionSweeper(get_settings()).run()
    except ProxyError as exc:
        logger.error("Retention sweep aborted code=%s error=%s", exc.code, exc.message)
        return 1

    logger.info(
        "Retention sweep deleted_count=%s cutoff_date=%s",
        result.deleted_count,
        result.cutoff_date.isoformat(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
