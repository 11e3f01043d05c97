from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.proxy import (
    CallerIdentity,
    GetSummaryResponse,
    GetTranscriptResponse,
    ListMeetingsRequest,
    ListMeetingsResponse,
    TranscriptSource,
)
from meeting_proxy.services.errors import AuthorizationError, InvalidRequestError, NotFoundError
from meeting_proxy.services.participation_ledger import (
    ParticipationLedger,
    create_participation_ledger,
)
from meeting_proxy.services.summary_formatter import summary_to_transcript
from meeting_proxy.services.vtt_parser import vtt_to_text
from meeting_proxy.services.zoom_admin_client import ZoomAdminClient, create_zoom_admin_client

logger = logging.getLogger(__name__)

TRANSCRIPT_FILE_TYPE = "TRANSCRIPT"
TRANSCRIPT_FILE_EXTENSION = "VTT"


class MeetingAccessService:
    def __init__(
        self,
        settings: Settings,
        ledger: ParticipationLedger | None = None,
        admin_client: ZoomAdminClient | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.settings = settings
        self.ledger = ledger or create_participation_ledger(settings)
        self.admin_client = admin_client or create_zoom_admin_client(settings)
        self._today = today or (lambda: datetime.now(UTC).date())

    def list_meetings(self, caller: CallerIdentity, payload: ListMeetingsRequest) -> ListMeetingsResponse:
        target_email = payload.user_email or caller.email
        querying_other_user = target_email != caller.email
        if (querying_other_user or payload.all_meetings) and not caller.is_admin:
            logger.warning(
                "Denied privileged listing caller=%s user_email=%s all_meetings=%s",
                caller.email,
                payload.user_email,
                payload.all_meetings,
            )
            raise AuthorizationError("Admin privileges are required to list other users' meetings.")

        to_date = payload.to_date or self._today()
        from_date = payload.from_date or (to_date - timedelta(days=self.settings.list_meetings_default_days))
        if from_date > to_date:
            raise InvalidRequestError("from_date must not be after to_date.")

        limit = min(
            payload.limit or self.settings.list_meetings_default_limit,
            self.settings.list_meetings_max_limit,
        )
        from_time, to_time = _date_range_bounds(from_date, to_date)

        # An explicit user_email scopes the listing even when all_meetings is set.
        list_everything = payload.all_meetings and not payload.user_email
        if list_everything:
            meetings = self.ledger.query_all(from_time, to_time, limit)
        else:
            meetings = self.ledger.query_by_participant(target_email, from_time, to_time, limit)

        logger.info(
            "Listed meetings caller=%s scope=%s from=%s to=%s count=%s",
            caller.email,
            "all" if list_everything else target_email,
            from_date.isoformat(),
            to_date.isoformat(),
            len(meetings),
        )
        return ListMeetingsResponse(meetings=meetings)

    def get_summary(self, caller: CallerIdentity, occurrence_id: str) -> GetSummaryResponse:
        self._authorize_occurrence(caller, occurrence_id)
        summary = self.admin_client.get_meeting_summary(occurrence_id)
        if summary is None:
            raise NotFoundError("Summary not available for this meeting.")
        return GetSummaryResponse(summary=summary)

    def get_transcript(self, caller: CallerIdentity, occurrence_id: str) -> GetTranscriptResponse:
        self._authorize_occurrence(caller, occurrence_id)

        transcript = self._fetch_recording_transcript(occurrence_id)
        if transcript is not None:
            return GetTranscriptResponse(transcript=transcript, source=TranscriptSource.recording)

        logger.info("No recording transcript occurrence_id=%s; falling back to AI summary", occurrence_id)
        summary = self.admin_client.get_meeting_summary(occurrence_id)
        if summary is None:
            raise NotFoundError("Transcript not available for this meeting.")
        return GetTranscriptResponse(
            transcript=summary_to_transcript(summary),
            source=TranscriptSource.ai_summary,
        )

    def _authorize_occurrence(self, caller: CallerIdentity, occurrence_id: str) -> None:
        if caller.is_admin:
            return
        if self.ledger.exists(occurrence_id, caller.email):
            return
        logger.warning("Denied occurrence access caller=%s occurrence_id=%s", caller.email, occurrence_id)
        raise AuthorizationError("You did not participate in this meeting.")

    def _fetch_recording_transcript(self, occurrence_id: str) -> str | None:
        recordings = self.admin_client.get_meeting_recordings(occurrence_id)
        if recordings is None:
            return None

        transcript_file = _find_transcript_file(recordings)
        if transcript_file is None:
            return None

        content = self.admin_client.download_file(transcript_file["download_url"])
        if content is None:
            return None
        return vtt_to_text(content)


def _find_transcript_file(recordings: dict[str, Any]) -> dict[str, Any] | None:
    files = recordings.get("recording_files")
    if not isinstance(files, list):
        return None
    for recording_file in files:
        if not isinstance(recording_file, dict):
            continue
        is_transcript = (
            recording_file.get("file_type") == TRANSCRIPT_FILE_TYPE
            or str(recording_file.get("file_extension", "")).upper() == TRANSCRIPT_FILE_EXTENSION
        )
        download_url = recording_file.get("download_url")
        if is_transcript and isinstance(download_url, str) and download_url.strip():
            return recording_file
    return None


def _date_range_bounds(from_date: date, to_date: date) -> tuple[datetime, datetime]:
    from_time = datetime.combine(from_date, time.min, tzinfo=UTC)
    to_time = datetime.combine(to_date, time.max, tzinfo=UTC)
    return from_time, to_time
