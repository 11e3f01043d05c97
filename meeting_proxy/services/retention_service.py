from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.jobs import RetentionResponse
from meeting_proxy.services.errors import AuthenticationError, ConfigurationError
from meeting_proxy.services.participation_ledger import (
    ParticipationLedger,
    create_participation_ledger,
)

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(
        self,
        settings: Settings,
        ledger: ParticipationLedger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger or create_participation_ledger(settings)
        self._clock = clock or (lambda: datetime.now(UTC))

    def run(self) -> RetentionResponse:
        cutoff = self._clock() - timedelta(days=self.settings.retention_days)
        logger.info("Retention sweep started cutoff=%s", cutoff.isoformat())
        deleted_count = self.ledger.delete_older_than(cutoff)
        logger.info("Retention sweep finished deleted_count=%s", deleted_count)
        return RetentionResponse(deleted_count=deleted_count, cutoff_date=cutoff)


def verify_retention_job_token(settings: Settings, presented_token: str | None) -> None:
    expected_token = settings.retention_job_token.strip()
    if not expected_token:
        raise ConfigurationError("RETENTION_JOB_TOKEN is not configured.")
    if not presented_token or not hmac.compare_digest(
        presented_token.strip().encode("utf-8"),
        expected_token.encode("utf-8"),
    ):
        raise AuthenticationError("Invalid retention job token.")
