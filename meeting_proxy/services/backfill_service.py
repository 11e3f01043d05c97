from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import UTC, date, datetime, timedelta
from typing import Any

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.jobs import BackfillReport
from meeting_proxy.schemas.participation import ParticipationRecord, ParticipationSource
from meeting_proxy.services.errors import UpstreamError
from meeting_proxy.services.participant_set import ParticipantSet
from meeting_proxy.services.participation_ledger import (
    ParticipationLedger,
    create_participation_ledger,
)
from meeting_proxy.services.request_pacer import RequestPacer
from meeting_proxy.services.zoom_admin_client import (
    ZoomAdminClient,
    create_zoom_admin_client,
    parse_zoom_datetime,
    parse_zoom_int,
)

logger = logging.getLogger(__name__)

DEFAULT_BACKFILL_DAYS = 180


def iter_date_windows(from_date: date, to_date: date, window_days: int) -> Iterator[tuple[date, date]]:
    """Yields inclusive ``(start, end)`` windows covering ``from_date..to_date``."""
    window_start = from_date
    while window_start <= to_date:
        window_end = min(window_start + timedelta(days=window_days), to_date)
        yield window_start, window_end
        window_start = window_end + timedelta(days=1)


class BackfillService:
    def __init__(
        self,
        settings: Settings,
        ledger: ParticipationLedger | None = None,
        admin_client: ZoomAdminClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger or create_participation_ledger(settings)
        self.admin_client = admin_client or create_zoom_admin_client(
            settings,
            pacer=RequestPacer(settings.backfill_requests_per_second),
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    def default_range(self) -> tuple[date, date]:
        to_date = self._clock().date()
        return to_date - timedelta(days=DEFAULT_BACKFILL_DAYS), to_date

    def run(
        self,
        from_date: date | None = None,
        to_date: date | None = None,
        dry_run: bool = False,
    ) -> BackfillReport:
        default_from, default_to = self.default_range()
        from_date = from_date or default_from
        to_date = to_date or default_to
        if from_date > to_date:
            raise ValueError("from_date must not be after to_date")

        report = BackfillReport(from_date=from_date, to_date=to_date, dry_run=dry_run)
        users = sorted(
            self.admin_client.list_active_users(),
            key=lambda user: str(user.get("email") or "").lower(),
        )
        logger.info(
            "Backfill started users=%s from=%s to=%s dry_run=%s",
            len(users),
            from_date.isoformat(),
            to_date.isoformat(),
            dry_run,
        )

        for index, user in enumerate(users, start=1):
            user_label = str(user.get("email") or user.get("id") or "unknown")
            try:
                meetings_found, records_written = self._backfill_user(user, from_date, to_date, dry_run)
            except UpstreamError as exc:
                logger.error("Backfill failed user=%s error=%s", user_label, exc.message)
                report.failed_users.append(user_label)
                continue
            report.users_processed += 1
            report.meetings_found += meetings_found
            report.records_written += records_written
            logger.info(
                "[%s/%s] user=%s meetings=%s records=%s",
                index,
                len(users),
                user_label,
                meetings_found,
                records_written,
            )

        logger.info(
            "Backfill finished users_processed=%s meetings_found=%s records_written=%s failed_users=%s",
            report.users_processed,
            report.meetings_found,
            report.records_written,
            len(report.failed_users),
        )
        return report

    def _backfill_user(
        self,
        user: dict[str, Any],
        from_date: date,
        to_date: date,
        dry_run: bool,
    ) -> tuple[int, int]:
        user_id = user.get("id")
        if not isinstance(user_id, str) or not user_id.strip():
            return 0, 0

        meetings_found = 0
        records_written = 0
        for window_start, window_end in iter_date_windows(from_date, to_date, self.settings.backfill_window_days):
            for meeting in self.admin_client.list_user_meetings(user_id, window_start, window_end):
                records = self._build_meeting_records(user, meeting)
                if not records:
                    continue
                meetings_found += 1
                if dry_run:
                    continue
                records_written += self.ledger.upsert_batch(records)
        return meetings_found, records_written

    def _build_meeting_records(
        self,
        user: dict[str, Any],
        meeting: dict[str, Any],
    ) -> list[ParticipationRecord]:
        occurrence_id = meeting.get("uuid")
        start_time = parse_zoom_datetime(meeting.get("start_time"))
        if not isinstance(occurrence_id, str) or not occurrence_id or start_time is None:
            logger.warning("Skipping report meeting without uuid or start_time id=%s", meeting.get("id"))
            return []

        host_email = meeting.get("host_email") or user.get("email")
        participants = ParticipantSet()
        participants.add_host(host_email, user.get("first_name"))

        api_participants = self.admin_client.list_past_meeting_participants(occurrence_id)
        if api_participants is None:
            logger.info("Participants not found occurrence_id=%s; recording host only", occurrence_id)
        for participant in api_participants or []:
            participants.add(participant.get("user_email"), participant.get("name"))

        return participants.to_records(
            occurrence_id=occurrence_id,
            meeting_id=str(meeting.get("id") or ""),
            topic=str(meeting.get("topic") or ""),
            host_email=host_email if isinstance(host_email, str) else None,
            start_time=start_time,
            end_time=parse_zoom_datetime(meeting.get("end_time")),
            duration_minutes=parse_zoom_int(meeting.get("duration")) or 0,
            has_summary=True,
            has_recording=True,
            source=ParticipationSource.backfill,
            indexed_at=self._clock(),
        )
