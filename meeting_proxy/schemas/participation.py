from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, field_validator


class ParticipationSource(StrEnum):
    webhook = "webhook"
    backfill = "backfill"
    preregistration = "preregistration"
    manual_grant = "manual_grant"


REVOCABLE_SOURCES = frozenset({ParticipationSource.preregistration, ParticipationSource.manual_grant})


class ParticipationRecord(BaseModel):
    occurrence_id: str
    meeting_id: str
    topic: str = ""
    host_email: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    duration_minutes: int = 0
    participant_email: str
    participant_name: str = ""
    has_summary: bool = False
    has_recording: bool = False
    indexed_at: datetime
    source: ParticipationSource
    granted_by: str | None = None

    @field_validator("participant_email", mode="before")
    @classmethod
    def normalize_participant_email(cls, value: str) -> str:
        return str(value).strip().lower()

    @field_validator("host_email", mode="before")
    @classmethod
    def normalize_host_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None


class MeetingListItem(BaseModel):
    occurrence_id: str
    meeting_id: str
    topic: str
    date: datetime
    duration_minutes: int
    host_email: str | None = None
    has_summary: bool
    has_recording: bool
