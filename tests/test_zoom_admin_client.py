from datetime import date
from urllib import parse

import pytest

from meeting_proxy.services.errors import UpstreamError
from meeting_proxy.services.service_token_cache import ServiceTokenCache
from meeting_proxy.services.zoom_admin_client import (
    ZoomAdminClient,
    encode_occurrence_id,
    parse_zoom_datetime,
)
from zoom_fakes import FakeZoomApi


class _RotatingTokens:
    def __init__(self) -> None:
        self.issued: list[str] = []

    def __call__(self) -> tuple[str, float]:
        self.issued.append(f"token-{len(self.issued) + 1}")
        return self.issued[-1], 3600


def _client(
    sleeps: list[float] | None = None,
    max_upstream_retries: int = 2,
) -> tuple[ZoomAdminClient, _RotatingTokens]:
    tokens = _RotatingTokens()
    recorded = sleeps if sleeps is not None else []
    client = ZoomAdminClient(
        token_cache=ServiceTokenCache(tokens),
        max_upstream_retries=max_upstream_retries,
        sleep=recorded.append,
    )
    return client, tokens


def test_encode_occurrence_id_encodes_twice() -> None:
    assert encode_occurrence_id("/ajXp112QmuoKj4854875==") == "%252FajXp112QmuoKj4854875%253D%253D"
    assert encode_occurrence_id("plainUuid") == "plainUuid"


def test_not_found_maps_to_none(fake_zoom: FakeZoomApi) -> None:
    client, _ = _client()

    assert client.get_meeting_summary("U1") is None
    assert client.get_meeting_recordings("U1") is None
    assert client.list_past_meeting_participants("U1") is None


def test_auth_failure_refreshes_token_once_and_retries(fake_zoom: FakeZoomApi) -> None:
    def summary(req):  # type: ignore[no-untyped-def]
        if req.headers["Authorization"] == "Bearer token-1":
            return 401
        return {"summary_overview": "ok"}

    fake_zoom.add("/v2/meetings/U1/meeting_summary", summary)
    client, tokens = _client()

    assert client.get_meeting_summary("U1") == {"summary_overview": "ok"}
    assert tokens.issued == ["token-1", "token-2"]


def test_persistent_auth_failure_raises_after_single_retry(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add("/v2/meetings/U1/meeting_summary", 403)
    client, tokens = _client()

    with pytest.raises(UpstreamError) as exc_info:
        client.get_meeting_summary("U1")

    assert exc_info.value.upstream_status == 403
    assert tokens.issued == ["token-1", "token-2"]
    assert len(fake_zoom.requests) == 2


def test_rate_limit_waits_for_retry_after_and_retries_same_request(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add(
        "/v2/meetings/U1/meeting_summary",
        [(429, {"Retry-After": "3"}), {"summary_overview": "ok"}],
    )
    sleeps: list[float] = []
    client, _ = _client(sleeps)

    assert client.get_meeting_summary("U1") == {"summary_overview": "ok"}
    assert sleeps == [3.0]
    assert fake_zoom.paths() == ["/v2/meetings/U1/meeting_summary"] * 2


def test_rate_limit_without_retry_after_uses_default_delay(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add("/v2/meetings/U1/recordings", [(429, {}), {"recording_files": []}])
    sleeps: list[float] = []
    client, _ = _client(sleeps)

    assert client.get_meeting_recordings("U1") == {"recording_files": []}
    assert sleeps == [5.0]


def test_server_errors_are_retried_then_surface(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add("/v2/past_meetings/U1", 503)
    sleeps: list[float] = []
    client, _ = _client(sleeps, max_upstream_retries=2)

    with pytest.raises(UpstreamError):
        client.get_past_meeting("U1")

    assert len(fake_zoom.requests) == 3
    assert sleeps == [0.5, 1.0]


def test_participants_are_paginated(fake_zoom: FakeZoomApi) -> None:
    def participants(req):  # type: ignore[no-untyped-def]
        query = parse.parse_qs(parse.urlsplit(req.full_url).query)
        assert query["page_size"] == ["300"]
        if query.get("next_page_token") == ["page-2"]:
            return {"participants": [{"user_email": "carol@x.com"}], "next_page_token": ""}
        return {"participants": [{"user_email": "bob@x.com"}], "next_page_token": "page-2"}

    fake_zoom.add("/v2/past_meetings/U1/participants", participants)
    client, _ = _client()

    emails = [item["user_email"] for item in client.list_past_meeting_participants("U1") or []]

    assert emails == ["bob@x.com", "carol@x.com"]


def test_download_passes_token_as_query_parameter(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add("/rec/download/abc", "WEBVTT\n")
    client, _ = _client()

    content = client.download_file("https://zoom.us/rec/download/abc?type=vtt")

    assert content == "WEBVTT\n"
    query = parse.parse_qs(parse.urlsplit(fake_zoom.requests[0].full_url).query)
    assert query == {"type": ["vtt"], "access_token": ["token-1"]}


def test_user_exists_reflects_directory_lookup(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add("/v2/users/bob%40x.com", {"id": "bob", "email": "bob@x.com"})
    client, _ = _client()

    assert client.user_exists("bob@x.com") is True
    assert client.user_exists("gone@x.com") is False


def test_report_meetings_query_uses_date_window(fake_zoom: FakeZoomApi) -> None:
    def report(req):  # type: ignore[no-untyped-def]
        query = parse.parse_qs(parse.urlsplit(req.full_url).query)
        assert query["from"] == ["2026-01-01"]
        assert query["to"] == ["2026-01-30"]
        assert query["type"] == ["past"]
        return {"meetings": [{"uuid": "U1"}]}

    fake_zoom.add("/v2/report/users/u1/meetings", report)
    client, _ = _client()

    assert client.list_user_meetings("u1", date(2026, 1, 1), date(2026, 1, 30)) == [{"uuid": "U1"}]


def test_parse_zoom_datetime_handles_zulu_suffix() -> None:
    parsed = parse_zoom_datetime("2026-02-12T18:00:00Z")

    assert parsed is not None
    assert parsed.utcoffset() is not None
    assert parsed.hour == 18
    assert parse_zoom_datetime("not a date") is None
