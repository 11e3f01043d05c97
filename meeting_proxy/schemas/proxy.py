from datetime import date
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meeting_proxy.schemas.participation import MeetingListItem


class CallerIdentity(BaseModel):
    email: str
    role_id: int | None = None
    is_admin: bool


class ListMeetingsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    from_date: date | None = None
    to_date: date | None = None
    limit: int | None = Field(default=None, ge=1)
    user_email: str | None = None
    all_meetings: bool = False

    @field_validator("user_email", mode="before")
    @classmethod
    def normalize_user_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip().lower()
        return cleaned or None


class ListMeetingsResponse(BaseModel):
    meetings: list[MeetingListItem]


class GetContentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    occurrence_id: str = Field(min_length=1)

    @field_validator("occurrence_id", mode="before")
    @classmethod
    def strip_occurrence_id(cls, value: str) -> str:
        return str(value).strip()


class GetSummaryResponse(BaseModel):
    summary: dict[str, Any]


class TranscriptSource(StrEnum):
    recording = "recording"
    ai_summary = "ai_summary"


class GetTranscriptResponse(BaseModel):
    transcript: str
    source: TranscriptSource
