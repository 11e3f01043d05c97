from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime
from typing import Any
from urllib import error, parse, request

from meeting_proxy.core.config import Settings
from meeting_proxy.services.errors import UpstreamError
from meeting_proxy.services.request_pacer import RequestPacer
from meeting_proxy.services.service_token_cache import ServiceTokenCache, get_service_token_cache

logger = logging.getLogger(__name__)

PAGE_SIZE = 300
DEFAULT_RETRY_AFTER_SECONDS = 5.0


def encode_occurrence_id(occurrence_id: str) -> str:
    # Zoom only resolves instance UUIDs containing "/" or "=" when encoded twice.
    return parse.quote(parse.quote(occurrence_id, safe=""), safe="")


class ZoomAdminClient:
    def __init__(
        self,
        *,
        token_cache: ServiceTokenCache,
        api_base_url: str = "https://api.zoom.us/v2",
        timeout_seconds: float = 10.0,
        user_agent: str = "MeetingAccessProxy/1.0",
        max_upstream_retries: int = 2,
        pacer: RequestPacer | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.token_cache = token_cache
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self.max_upstream_retries = max_upstream_retries
        self.pacer = pacer
        self._sleep = sleep

    def get_past_meeting(self, occurrence_id: str) -> dict[str, Any] | None:
        return self._get_json(f"/past_meetings/{encode_occurrence_id(occurrence_id)}")

    def list_past_meeting_participants(self, occurrence_id: str) -> list[dict[str, Any]] | None:
        return self._get_paginated(
            f"/past_meetings/{encode_occurrence_id(occurrence_id)}/participants",
            items_key="participants",
        )

    def get_meeting_summary(self, occurrence_id: str) -> dict[str, Any] | None:
        return self._get_json(f"/meetings/{encode_occurrence_id(occurrence_id)}/meeting_summary")

    def get_meeting_recordings(self, occurrence_id: str) -> dict[str, Any] | None:
        return self._get_json(f"/meetings/{encode_occurrence_id(occurrence_id)}/recordings")

    def download_file(self, download_url: str) -> str | None:
        """Downloads a recording file; Zoom expects the token as a query parameter here."""
        raw_body = self._send(download_url, token_location="query")
        if raw_body is None:
            return None
        return raw_body.decode("utf-8", errors="replace")

    def get_user(self, user_id_or_email: str) -> dict[str, Any] | None:
        return self._get_json(f"/users/{parse.quote(user_id_or_email, safe='')}")

    def user_exists(self, email: str) -> bool:
        return self.get_user(email) is not None

    def list_active_users(self) -> list[dict[str, Any]]:
        users = self._get_paginated("/users", items_key="users", query={"status": "active"})
        return users or []

    def list_user_meetings(
        self,
        user_id: str,
        from_date: date,
        to_date: date,
    ) -> list[dict[str, Any]]:
        meetings = self._get_paginated(
            f"/report/users/{parse.quote(user_id, safe='')}/meetings",
            items_key="meetings",
            query={
                "from": from_date.isoformat(),
                "to": to_date.isoformat(),
                "type": "past",
            },
        )
        return meetings or []

    def _get_paginated(
        self,
        path: str,
        *,
        items_key: str,
        query: Mapping[str, str] | None = None,
    ) -> list[dict[str, Any]] | None:
        items: list[dict[str, Any]] = []
        next_page_token: str | None = None
        while True:
            page_query = {**(query or {}), "page_size": str(PAGE_SIZE)}
            if next_page_token:
                page_query["next_page_token"] = next_page_token
            payload = self._get_json(path, query=page_query)
            if payload is None:
                # Only a missing first page means the resource itself is absent.
                return items if items else None
            raw_items = payload.get(items_key)
            if isinstance(raw_items, list):
                items.extend(item for item in raw_items if isinstance(item, dict))
            token = payload.get("next_page_token")
            next_page_token = token if isinstance(token, str) and token.strip() else None
            if not next_page_token:
                return items

    def _get_json(
        self,
        path: str,
        query: Mapping[str, str] | None = None,
    ) -> dict[str, Any] | None:
        target = f"{self.api_base_url}{path}"
        if query:
            target = f"{target}?{parse.urlencode(query)}"
        raw_body = self._send(target, token_location="header")
        if raw_body is None:
            return None

        try:
            parsed_body = json.loads(raw_body.decode("utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise UpstreamError(f"Zoom API returned invalid JSON for {path}.") from exc
        if not isinstance(parsed_body, dict):
            raise UpstreamError(f"Zoom API response for {path} is not a JSON object.")
        return parsed_body

    def _send(self, target: str, *, token_location: str) -> bytes | None:
        auth_retry_available = True
        upstream_attempts = 0
        display_target = parse.urlsplit(target).path

        while True:
            token = self.token_cache.get()
            req = self._build_request(target, token=token, token_location=token_location)
            if self.pacer:
                self.pacer.wait()

            try:
                with request.urlopen(req, timeout=self.timeout_seconds) as response:
                    return response.read()
            except error.HTTPError as exc:
                status_code = exc.code
                if status_code == 404:
                    return None
                if status_code in (401, 403) and auth_retry_available:
                    logger.warning(
                        "Zoom API rejected service token status_code=%s path=%s; refreshing",
                        status_code,
                        display_target,
                    )
                    auth_retry_available = False
                    self.token_cache.invalidate(token)
                    continue
                if status_code == 429:
                    retry_after = _parse_retry_after(exc.headers)
                    logger.warning(
                        "Zoom API rate limited path=%s retry_after_seconds=%s",
                        display_target,
                        retry_after,
                    )
                    self._sleep(retry_after)
                    continue
                if status_code >= 500 and upstream_attempts < self.max_upstream_retries:
                    upstream_attempts += 1
                    self._sleep(_backoff_seconds(upstream_attempts))
                    continue
                raise UpstreamError(
                    f"Zoom API HTTP {status_code} for {display_target}.",
                    upstream_status=status_code,
                ) from exc
            except (error.URLError, TimeoutError) as exc:
                if upstream_attempts < self.max_upstream_retries:
                    upstream_attempts += 1
                    self._sleep(_backoff_seconds(upstream_attempts))
                    continue
                reason = getattr(exc, "reason", exc)
                raise UpstreamError(
                    f"Zoom API connection error for {display_target}: {reason}",
                ) from exc

    def _build_request(self, target: str, *, token: str, token_location: str) -> request.Request:
        headers = {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }
        if token_location == "query":
            target = _with_query_param(target, "access_token", token)
        else:
            headers["Authorization"] = f"Bearer {token}"
        return request.Request(target, headers=headers, method="GET")


def create_zoom_admin_client(
    settings: Settings,
    *,
    pacer: RequestPacer | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ZoomAdminClient:
    return ZoomAdminClient(
        token_cache=get_service_token_cache(settings),
        api_base_url=settings.zoom_api_base_url,
        timeout_seconds=settings.zoom_api_timeout_seconds,
        user_agent=settings.zoom_api_user_agent,
        max_upstream_retries=settings.zoom_upstream_max_retries,
        pacer=pacer,
        sleep=sleep,
    )


def parse_zoom_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value.strip():
        return None
    # Zoom returns times like '2024-02-12T18:00:00Z'
    normalized = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_zoom_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _with_query_param(url: str, name: str, value: str) -> str:
    parts = parse.urlsplit(url)
    query = [(key, item) for key, item in parse.parse_qsl(parts.query, keep_blank_values=True) if key != name]
    query.append((name, value))
    return parse.urlunsplit(parts._replace(query=parse.urlencode(query)))


def _parse_retry_after(headers: Any) -> float:
    if headers is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    raw_value = headers.get("Retry-After")
    if raw_value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        parsed_value = float(str(raw_value).strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS
    if parsed_value < 0:
        return DEFAULT_RETRY_AFTER_SECONDS
    return parsed_value


def _backoff_seconds(attempt: int) -> float:
    return min(0.5 * (2 ** (attempt - 1)), 4.0)
