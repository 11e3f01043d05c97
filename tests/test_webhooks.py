import hashlib
import hmac
import json
import time
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from meeting_proxy.core.config import get_settings
from meeting_proxy.main import app
from meeting_proxy.schemas.access import AccessRule
from meeting_proxy.schemas.participation import ParticipationSource
from meeting_proxy.services.access_rule_store import create_access_rule_store
from meeting_proxy.services.participation_ledger import create_participation_ledger
from zoom_fakes import WEBHOOK_SECRET, FakeZoomApi, make_record, signed_headers

WEBHOOK_PATH = "/api/webhooks/zoom"


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _meeting_ended_body(**object_overrides: Any) -> bytes:
    meeting_object: dict[str, Any] = {
        "id": 85746065432,
        "uuid": "U1",
        "topic": "Weekly sync",
        "host_id": "host-alice",
        "host_email": "alice@x.com",
        "user_name": "Alice",
        "start_time": "2026-10-18T15:00:00Z",
        "end_time": "2026-10-18T15:30:00Z",
        "duration": 30,
        "participant": [],
    }
    meeting_object.update(object_overrides)
    return json.dumps(
        {
            "event": "meeting.ended",
            "event_ts": 1760800000000,
            "payload": {"account_id": "account-id", "object": meeting_object},
        },
    ).encode("utf-8")


def _mount_meeting(fake_zoom: FakeZoomApi) -> None:
    fake_zoom.add(
        "/v2/past_meetings/U1",
        {
            "uuid": "U1",
            "id": 85746065432,
            "host_email": "alice@x.com",
            "end_time": "2026-10-18T15:32:00Z",
            "duration": 32,
        },
    )
    fake_zoom.add(
        "/v2/past_meetings/U1/participants",
        {"participants": [{"name": "Bob Builder", "user_email": "Bob@X.com"}], "next_page_token": ""},
    )


def test_url_validation_challenge_returns_hmac_of_plain_token(client: TestClient) -> None:
    raw_body = json.dumps(
        {"event": "endpoint.url_validation", "payload": {"plainToken": "qgg8vlvZRS6UYooatFL8Aw"}},
    ).encode("utf-8")

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    expected = hmac.new(
        WEBHOOK_SECRET.encode("utf-8"),
        b"qgg8vlvZRS6UYooatFL8Aw",
        hashlib.sha256,
    ).hexdigest()
    assert response.json() == {"plainToken": "qgg8vlvZRS6UYooatFL8Aw", "encryptedToken": expected}


def test_url_validation_without_plain_token_returns_400(client: TestClient) -> None:
    raw_body = json.dumps({"event": "endpoint.url_validation", "payload": {}}).encode("utf-8")

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_request"


def test_url_validation_still_requires_valid_signature(client: TestClient) -> None:
    raw_body = json.dumps(
        {"event": "endpoint.url_validation", "payload": {"plainToken": "abc"}},
    ).encode("utf-8")

    response = client.post(
        WEBHOOK_PATH,
        content=raw_body,
        headers=signed_headers(raw_body, secret="wrong-secret"),
    )

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "invalid_signature"


def test_meeting_ended_writes_host_and_participants(client: TestClient, fake_zoom: FakeZoomApi) -> None:
    _mount_meeting(fake_zoom)
    raw_body = _meeting_ended_body()

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    assert response.json() == {
        "status": "processed",
        "event": "meeting.ended",
        "occurrence_id": "U1",
        "records_written": 2,
    }
    ledger = create_participation_ledger(get_settings())
    alice = ledger.get("U1", "alice@x.com")
    bob = ledger.get("U1", "bob@x.com")
    assert alice is not None
    assert alice.participant_name == "Alice"
    assert alice.duration_minutes == 32
    assert alice.meeting_id == "85746065432"
    assert bob is not None
    assert bob.participant_email == "bob@x.com"
    assert bob.participant_name == "Bob Builder"
    assert bob.source == ParticipationSource.webhook
    assert not ledger.exists("U1", "carol@x.com")
    assert "/v2/past_meetings/U1/participants" in fake_zoom.paths()


def test_duplicate_delivery_keeps_one_record_per_participant(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    _mount_meeting(fake_zoom)
    raw_body = _meeting_ended_body()

    first = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))
    second = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert first.status_code == 200
    assert second.status_code == 200
    ledger = create_participation_ledger(get_settings())
    listing = ledger.query_by_participant(
        "bob@x.com",
        from_time=datetime(2026, 10, 18, tzinfo=UTC),
        to_time=datetime(2026, 10, 19, tzinfo=UTC),
        limit=10,
    )
    assert [meeting.occurrence_id for meeting in listing] == ["U1"]
    assert ledger.get("U1", "alice@x.com") is not None
    assert ledger.count_for_occurrence("U1") == 2


def test_host_missing_from_participant_list_still_gets_record(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    fake_zoom.add("/v2/past_meetings/U1", 404)
    fake_zoom.add("/v2/past_meetings/U1/participants", {"participants": [{"name": "Bob", "user_email": "bob@x.com"}]})
    fake_zoom.add("/v2/users/host-alice", {"id": "host-alice", "email": "Alice@X.com"})
    raw_body = _meeting_ended_body(host_email=None)

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    ledger = create_participation_ledger(get_settings())
    alice = ledger.get("U1", "alice@x.com")
    assert alice is not None
    assert alice.host_email == "alice@x.com"
    assert alice.has_summary is False
    assert ledger.exists("U1", "bob@x.com")


def test_payload_attendees_are_kept_when_participant_api_fails(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    fake_zoom.add("/v2/past_meetings/U1", {"host_email": "alice@x.com"})
    fake_zoom.add("/v2/past_meetings/U1/participants", 500)
    raw_body = _meeting_ended_body(participant=[{"user_name": "Dana", "email": "dana@x.com"}])

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    assert response.json()["records_written"] == 2
    dana = create_participation_ledger(get_settings()).get("U1", "dana@x.com")
    assert dana is not None
    assert dana.participant_name == "Dana"


def test_tampered_body_is_rejected_without_ledger_mutation(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    _mount_meeting(fake_zoom)
    raw_body = _meeting_ended_body()
    headers = signed_headers(raw_body)

    response = client.post(WEBHOOK_PATH, content=raw_body.replace(b"U1", b"U2"), headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "invalid_signature"
    ledger = create_participation_ledger(get_settings())
    assert not ledger.exists("U1", "alice@x.com")
    assert not ledger.exists("U2", "alice@x.com")
    assert fake_zoom.requests == []


def test_stale_timestamp_is_rejected_without_ledger_mutation(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    _mount_meeting(fake_zoom)
    raw_body = _meeting_ended_body()

    response = client.post(
        WEBHOOK_PATH,
        content=raw_body,
        headers=signed_headers(raw_body, timestamp=int(time.time()) - 301),
    )

    assert response.status_code == 401
    assert not create_participation_ledger(get_settings()).exists("U1", "alice@x.com")


def test_missing_signature_headers_are_rejected(client: TestClient) -> None:
    raw_body = _meeting_ended_body()

    response = client.post(WEBHOOK_PATH, content=raw_body, headers={"content-type": "application/json"})

    assert response.status_code == 401


def test_unknown_event_is_acknowledged_and_ignored(client: TestClient) -> None:
    raw_body = json.dumps({"event": "meeting.started", "payload": {}}).encode("utf-8")

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_malformed_json_returns_400(client: TestClient) -> None:
    raw_body = b"{not json"

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 400


def test_missing_secret_returns_configuration_error(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ZOOM_WEBHOOK_SECRET_TOKEN", "")
    get_settings.cache_clear()
    raw_body = _meeting_ended_body()

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 500
    assert response.json()["detail"]["code"] == "configuration_error"


def test_access_rules_materialize_preregistration_records(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    _mount_meeting(fake_zoom)
    settings = get_settings()
    rules = create_access_rule_store(settings)
    rules.upsert(
        AccessRule(
            meeting_id="85746065432",
            participant_email="erin@x.com",
            created_by="admin@x.com",
            created_at=make_record("U0", "erin@x.com").indexed_at,
        ),
    )
    rules.upsert(
        AccessRule(
            meeting_id="85746065432",
            participant_email="bob@x.com",
            created_by="admin@x.com",
            created_at=make_record("U0", "bob@x.com").indexed_at,
        ),
    )
    raw_body = _meeting_ended_body()

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    assert response.json()["records_written"] == 3
    ledger = create_participation_ledger(settings)
    erin = ledger.get("U1", "erin@x.com")
    assert erin is not None
    assert erin.source == ParticipationSource.preregistration
    assert erin.granted_by == "admin@x.com"
    assert ledger.get("U1", "bob@x.com").source == ParticipationSource.webhook  # type: ignore[union-attr]


def test_webhook_write_promotes_existing_grant_to_ground_truth(
    client: TestClient,
    fake_zoom: FakeZoomApi,
) -> None:
    _mount_meeting(fake_zoom)
    ledger = create_participation_ledger(get_settings())
    ledger.upsert_batch([make_record("U1", "bob@x.com", source=ParticipationSource.manual_grant)])
    raw_body = _meeting_ended_body()

    response = client.post(WEBHOOK_PATH, content=raw_body, headers=signed_headers(raw_body))

    assert response.status_code == 200
    assert ledger.get("U1", "bob@x.com").source == ParticipationSource.webhook  # type: ignore[union-attr]
