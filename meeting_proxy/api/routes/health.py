from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool

from meeting_proxy.core.config import get_settings
from meeting_proxy.schemas.health import HealthResponse
from meeting_proxy.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def healthcheck() -> HealthResponse:
    # Liveness stays 200 while the ledger is down; the body reports degradation.
    return await run_in_threadpool(HealthService(get_settings()).get_status)
