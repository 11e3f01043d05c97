from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meeting_proxy.schemas.participation import ParticipationRecord


class _EmailNormalizingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    participant_email: str = Field(min_length=3)

    @field_validator("participant_email", mode="before")
    @classmethod
    def normalize_participant_email(cls, value: str) -> str:
        cleaned = str(value).strip().lower()
        if "@" not in cleaned:
            raise ValueError("participant_email must be an email address")
        return cleaned


class GrantRequest(_EmailNormalizingRequest):
    occurrence_id: str = Field(min_length=1)


class RevokeRequest(_EmailNormalizingRequest):
    occurrence_id: str = Field(min_length=1)


class GrantResponse(BaseModel):
    status: str
    record: ParticipationRecord


class RevokeResponse(BaseModel):
    status: str = "revoked"
    occurrence_id: str
    participant_email: str


class AccessRule(BaseModel):
    meeting_id: str
    participant_email: str
    created_by: str
    created_at: datetime

    @field_validator("participant_email", mode="before")
    @classmethod
    def normalize_participant_email(cls, value: str) -> str:
        return str(value).strip().lower()


class AccessRuleRequest(_EmailNormalizingRequest):
    meeting_id: str = Field(min_length=1)

    @field_validator("meeting_id", mode="before")
    @classmethod
    def normalize_meeting_id(cls, value: str | int) -> str:
        return str(value).strip().replace(" ", "")


class AccessRuleListRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    meeting_id: str | None = None


class AccessRuleListResponse(BaseModel):
    rules: list[AccessRule]


class AccessRuleRevalidationResponse(BaseModel):
    checked: int
    expired: list[AccessRule]
