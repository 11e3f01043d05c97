import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from fastapi import APIRouter, Depends, HTTPException, status

from meeting_proxy.core.config import Settings, get_settings
from meeting_proxy.schemas.proxy import (
    CallerIdentity,
    GetContentRequest,
    GetSummaryResponse,
    GetTranscriptResponse,
    ListMeetingsRequest,
    ListMeetingsResponse,
)
from meeting_proxy.services.errors import ProxyError, UpstreamTimeoutError, to_http_exception
from meeting_proxy.services.meeting_access_service import MeetingAccessService
from meeting_proxy.services.user_identity import ZoomUserValidator, require_bearer_token

router = APIRouter(prefix="/proxy", tags=["proxy"])
logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT")


@router.post("/list-meetings", response_model=ListMeetingsResponse)
async def list_meetings(
    payload: ListMeetingsRequest | None = None,
    access_token: str = Depends(require_bearer_token),
) -> ListMeetingsResponse:
    request_payload = payload or ListMeetingsRequest()
    return await _run_as_caller(
        "list-meetings",
        access_token,
        lambda service, caller: service.list_meetings(caller, request_payload),
    )


@router.post("/get-summary", response_model=GetSummaryResponse)
async def get_summary(
    payload: GetContentRequest,
    access_token: str = Depends(require_bearer_token),
) -> GetSummaryResponse:
    return await _run_as_caller(
        "get-summary",
        access_token,
        lambda service, caller: service.get_summary(caller, payload.occurrence_id),
    )


@router.post("/get-transcript", response_model=GetTranscriptResponse)
async def get_transcript(
    payload: GetContentRequest,
    access_token: str = Depends(require_bearer_token),
) -> GetTranscriptResponse:
    return await _run_as_caller(
        "get-transcript",
        access_token,
        lambda service, caller: service.get_transcript(caller, payload.occurrence_id),
    )


async def _run_as_caller(
    operation_name: str,
    access_token: str,
    operation: Callable[[MeetingAccessService, CallerIdentity], ResponseT],
) -> ResponseT:
    settings = get_settings()
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_resolve_and_run, settings, access_token, operation),
            timeout=settings.proxy_request_timeout_seconds,
        )
    except TimeoutError as exc:
        logger.warning(
            "Proxy request timed out operation=%s timeout_seconds=%s",
            operation_name,
            settings.proxy_request_timeout_seconds,
        )
        raise to_http_exception(UpstreamTimeoutError("The request timed out; please retry.")) from exc
    except ProxyError as exc:
        logger.info(
            "Proxy request failed operation=%s status_code=%s code=%s",
            operation_name,
            exc.status_code,
            exc.code,
        )
        raise to_http_exception(exc) from exc
    except Exception as exc:
        logger.exception("Proxy request crashed operation=%s", operation_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Internal error.", "code": "internal_error"},
        ) from exc


def _resolve_and_run(
    settings: Settings,
    access_token: str,
    operation: Callable[[MeetingAccessService, CallerIdentity], ResponseT],
) -> ResponseT:
    # Identity is re-derived on every request, never cached.
    caller = ZoomUserValidator(settings).validate(access_token)
    return operation(MeetingAccessService(settings), caller)
