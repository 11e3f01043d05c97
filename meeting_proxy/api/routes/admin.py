import logging
from collections.abc import Callable
from typing import TypeVar

from fastapi import APIRouter, Depends

from meeting_proxy.core.config import get_settings
from meeting_proxy.schemas.access import (
    AccessRule,
    AccessRuleListRequest,
    AccessRuleListResponse,
    AccessRuleRequest,
    AccessRuleRevalidationResponse,
    GrantRequest,
    GrantResponse,
    RevokeRequest,
    RevokeResponse,
)
from meeting_proxy.schemas.proxy import CallerIdentity
from meeting_proxy.services.access_grant_service import AccessGrantService
from meeting_proxy.services.errors import ProxyError, to_http_exception
from meeting_proxy.services.user_identity import require_caller_identity

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT")


@router.post("/grants", response_model=GrantResponse)
def grant_access(
    payload: GrantRequest,
    caller: CallerIdentity = Depends(require_caller_identity),
) -> GrantResponse:
    return _run(lambda service: service.grant(caller, payload))


@router.post("/revoke", response_model=RevokeResponse)
def revoke_access(
    payload: RevokeRequest,
    caller: CallerIdentity = Depends(require_caller_identity),
) -> RevokeResponse:
    return _run(lambda service: service.revoke(caller, payload))


@router.post("/access-rules", response_model=AccessRule)
def add_access_rule(
    payload: AccessRuleRequest,
    caller: CallerIdentity = Depends(require_caller_identity),
) -> AccessRule:
    return _run(lambda service: service.add_rule(caller, payload))


@router.post("/access-rules/delete", response_model=AccessRule)
def delete_access_rule(
    payload: AccessRuleRequest,
    caller: CallerIdentity = Depends(require_caller_identity),
) -> AccessRule:
    return _run(lambda service: service.delete_rule(caller, payload))


@router.post("/access-rules/list", response_model=AccessRuleListResponse)
def list_access_rules(
    payload: AccessRuleListRequest | None = None,
    caller: CallerIdentity = Depends(require_caller_identity),
) -> AccessRuleListResponse:
    meeting_id = payload.meeting_id if payload else None
    return _run(lambda service: service.list_rules(caller, meeting_id))


@router.post("/access-rules/revalidate", response_model=AccessRuleRevalidationResponse)
def revalidate_access_rules(
    caller: CallerIdentity = Depends(require_caller_identity),
) -> AccessRuleRevalidationResponse:
    return _run(lambda service: service.revalidate_rules(caller))


def _run(operation: Callable[[AccessGrantService], ResponseT]) -> ResponseT:
    try:
        return operation(AccessGrantService(get_settings()))
    except ProxyError as exc:
        logger.info("Admin request failed status_code=%s code=%s", exc.status_code, exc.code)
        raise to_http_exception(exc) from exc
