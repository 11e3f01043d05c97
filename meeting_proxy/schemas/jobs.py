from datetime import date, datetime

from pydantic import BaseModel, Field


class RetentionResponse(BaseModel):
    deleted_count: int
    cutoff_date: datetime


class BackfillReport(BaseModel):
    from_date: date
    to_date: date
    dry_run: bool
    users_processed: int = 0
    meetings_found: int = 0
    records_written: int = 0
    failed_users: list[str] = Field(default_factory=list)
