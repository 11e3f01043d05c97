from __future__ import annotations

import base64
import json
import logging
import threading
import time
from collections.abc import Callable
from functools import lru_cache
from urllib import error, parse, request

from meeting_proxy.core.config import Settings
from meeting_proxy.services.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[], tuple[str, float]]


class ServiceTokenCache:
    """Process-wide holder for the elevated service token.

    Refreshes lazily when the token is missing or within ``refresh_margin_seconds``
    of expiry. Concurrent callers that find the token stale wait on the same
    lock; whoever acquires it first refreshes, the rest re-check and reuse the
    new token instead of issuing their own exchange.
    """

    def __init__(
        self,
        fetch_token: TokenFetcher,
        *,
        refresh_margin_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetch_token = fetch_token
        self._refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def get(self) -> str:
        token = self._current_token()
        if token:
            return token

        with self._lock:
            token = self._current_token()
            if token:
                return token
            new_token, expires_in_seconds = self._fetch_token()
            self._token = new_token
            self._expires_at = self._clock() + max(expires_in_seconds, 0.0)
            logger.info("Service token refreshed expires_in_seconds=%s", int(expires_in_seconds))
            return new_token

    def invalidate(self, stale_token: str | None = None) -> None:
        with self._lock:
            # A token already replaced by another caller's refresh stays valid.
            if stale_token is not None and stale_token != self._token:
                return
            self._token = None
            self._expires_at = 0.0

    def _current_token(self) -> str | None:
        token = self._token
        if token and self._expires_at - self._refresh_margin_seconds > self._clock():
            return token
        return None


def request_account_credentials_token(
    *,
    token_url: str,
    account_id: str,
    client_id: str,
    client_secret: str,
    timeout_seconds: float = 10.0,
    user_agent: str = "MeetingAccessProxy/1.0",
) -> tuple[str, float]:
    if not account_id.strip() or not client_id.strip() or not client_secret.strip():
        raise ConfigurationError("Zoom admin credentials are not configured.")

    credentials = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
    body = parse.urlencode(
        {
            "grant_type": "account_credentials",
            "account_id": account_id,
        },
    ).encode("utf-8")
    req = request.Request(
        token_url,
        data=body,
        headers={
            "Authorization": f"Basic {credentials}",
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": user_agent,
        },
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout_seconds) as response:
            response_body = response.read()
    except TimeoutError as exc:
        raise UpstreamError("Zoom token request timed out.") from exc
    except error.HTTPError as exc:
        raise UpstreamError(
            f"Zoom token request HTTP {exc.code}.",
            upstream_status=exc.code,
        ) from exc
    except error.URLError as exc:
        raise UpstreamError(f"Zoom token request connection error: {exc.reason}") from exc

    try:
        payload = json.loads(response_body.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise UpstreamError("Zoom token endpoint returned invalid JSON.") from exc

    if not isinstance(payload, dict):
        raise UpstreamError("Zoom token response is not a JSON object.")
    access_token = payload.get("access_token")
    if not isinstance(access_token, str) or not access_token.strip():
        raise UpstreamError("Zoom token response did not include access_token.")

    try:
        expires_in = float(payload.get("expires_in", 3600))
    except (TypeError, ValueError):
        expires_in = 3600.0
    return access_token.strip(), expires_in


def get_service_token_cache(settings: Settings) -> ServiceTokenCache:
    return _get_service_token_cache_cached(
        token_url=settings.zoom_oauth_token_url,
        account_id=settings.zoom_admin_account_id,
        client_id=settings.zoom_admin_client_id,
        client_secret=settings.zoom_admin_client_secret,
        timeout_seconds=settings.zoom_api_timeout_seconds,
        user_agent=settings.zoom_api_user_agent,
        refresh_margin_seconds=settings.zoom_token_refresh_margin_seconds,
    )


@lru_cache
def _get_service_token_cache_cached(
    token_url: str,
    account_id: str,
    client_id: str,
    client_secret: str,
    timeout_seconds: float,
    user_agent: str,
    refresh_margin_seconds: int,
) -> ServiceTokenCache:
    def fetch_token() -> tuple[str, float]:
        return request_account_credentials_token(
            token_url=token_url,
            account_id=account_id,
            client_id=client_id,
            client_secret=client_secret,
            timeout_seconds=timeout_seconds,
            user_agent=user_agent,
        )

    return ServiceTokenCache(fetch_token, refresh_margin_seconds=refresh_margin_seconds)


def clear_service_token_cache() -> None:
    _get_service_token_cache_cached.cache_clear()
