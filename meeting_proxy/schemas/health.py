from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"] = "ok"
    service: str
    version: str
    environment: str
    ledger_store: str
    ledger: Literal["ok", "unavailable"]
    timestamp: datetime
