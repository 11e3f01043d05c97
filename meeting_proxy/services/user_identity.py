from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error, request

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from meeting_proxy.core.config import Settings, get_settings
from meeting_proxy.schemas.proxy import CallerIdentity
from meeting_proxy.services.errors import (
    AuthenticationError,
    ProxyError,
    UpstreamError,
    to_http_exception,
)

logger = logging.getLogger(__name__)

_HTTP_BEARER = HTTPBearer(auto_error=False)

# Zoom role ids 0 (owner) and 1 (admin) carry account-wide privileges.
ADMIN_ROLE_ID_THRESHOLD = 1


def is_admin_role(role_id: int | None) -> bool:
    return role_id is not None and role_id <= ADMIN_ROLE_ID_THRESHOLD


class ZoomUserValidator:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.api_base_url = self.settings.zoom_api_base_url.rstrip("/")

    def validate(self, access_token: str) -> CallerIdentity:
        token = access_token.strip()
        if not token:
            raise AuthenticationError("Missing bearer token.")

        payload = self._fetch_current_user(token)
        email = payload.get("email")
        if not isinstance(email, str) or not email.strip():
            raise UpstreamError("Zoom user profile did not include an email.")

        role_id = _parse_role_id(payload.get("role_id"))
        return CallerIdentity(
            email=email.strip().lower(),
            role_id=role_id,
            is_admin=is_admin_role(role_id),
        )

    def _fetch_current_user(self, token: str) -> dict[str, Any]:
        req = request.Request(
            f"{self.api_base_url}/users/me",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": self.settings.zoom_api_user_agent,
            },
            method="GET",
        )
        try:
            with request.urlopen(req, timeout=self.settings.zoom_api_timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise UpstreamError("Zoom identity request timed out.") from exc
        except error.HTTPError as exc:
            if exc.code == 401:
                raise AuthenticationError("Invalid or expired token.") from exc
            raise UpstreamError(
                f"Zoom identity request HTTP {exc.code}.",
                upstream_status=exc.code,
            ) from exc
        except error.URLError as exc:
            raise UpstreamError(f"Zoom identity request connection error: {exc.reason}") from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise UpstreamError("Zoom identity endpoint returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise UpstreamError("Zoom identity response is not a JSON object.")
        return payload


def require_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_HTTP_BEARER),
) -> str:
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials.strip():
        raise to_http_exception(AuthenticationError("Missing Authorization header."))
    return credentials.credentials.strip()


def require_caller_identity(access_token: str = Depends(require_bearer_token)) -> CallerIdentity:
    try:
        return ZoomUserValidator(get_settings()).validate(access_token)
    except ProxyError as exc:
        raise to_http_exception(exc) from exc


def _parse_role_id(raw_value: Any) -> int | None:
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, str):
        try:
            return int(raw_value.strip())
        except ValueError:
            logger.warning("Unrecognized Zoom role_id=%r; treating caller as non-admin", raw_value)
            return None
    return None
