import logging

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from meeting_proxy.core.config import get_settings
from meeting_proxy.schemas.jobs import RetentionResponse
from meeting_proxy.services.errors import ProxyError, to_http_exception
from meeting_proxy.services.retention_service import RetentionSweeper, verify_retention_job_token

router = APIRouter(prefix="/jobs", tags=["jobs"])
logger = logging.getLogger(__name__)

_HTTP_BEARER = HTTPBearer(auto_error=False)


@router.post("/retention", response_model=RetentionResponse)
def run_retention_sweep(
    credentials: HTTPAuthorizationCredentials | None = Depends(_HTTP_BEARER),
) -> RetentionResponse:
    settings = get_settings()
    try:
        verify_retention_job_token(settings, credentials.credentials if credentials else None)
        return RetentionSweeper(settings).run()
    except ProxyError as exc:
        logger.warning(
            "Retention job rejected status_code=%s code=%s",
            exc.status_code,
            exc.code,
        )
        raise to_http_exception(exc) from exc
