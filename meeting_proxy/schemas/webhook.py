from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MEETING_ENDED_EVENT = "meeting.ended"
URL_VALIDATION_EVENT = "endpoint.url_validation"


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = Field(min_length=1)
    event_ts: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class UrlValidationPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    plainToken: str = Field(min_length=1)


class UrlValidationResponse(BaseModel):
    plainToken: str
    encryptedToken: str


class WebhookParticipant(BaseModel):
    model_config = ConfigDict(extra="allow")

    user_name: str | None = None
    email: str | None = None
    user_id: str | None = None
    participant_uuid: str | None = None


class MeetingEndedObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    uuid: str = Field(min_length=1)
    topic: str = ""
    host_id: str | None = None
    host_email: str | None = None
    user_name: str | None = None
    start_time: datetime
    end_time: datetime | None = None
    duration: int = 0
    participant: list[WebhookParticipant] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_meeting_id(cls, value: Any) -> str:
        if isinstance(value, bool) or value is None:
            raise ValueError("meeting id must be a string or number")
        return str(value)


class MeetingEndedPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    account_id: str | None = None
    object: MeetingEndedObject


class WebhookAcknowledgement(BaseModel):
    status: str
    event: str
    occurrence_id: str | None = None
    records_written: int = 0
