from fastapi.testclient import TestClient

from meeting_proxy.core.config import Settings
from meeting_proxy.main import app
from meeting_proxy.services.health_service import HealthService
from meeting_proxy.services.participation_ledger import InMemoryParticipationLedger

client = TestClient(app)


class _UnreachableLedger(InMemoryParticipationLedger):
    def is_available(self) -> bool:
        return False


def test_health_endpoint_returns_expected_shape() -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "Meeting Access Proxy"
    assert data["version"] == "0.1.0"
    assert data["ledger_store"] == "memory"
    assert data["ledger"] == "ok"
    assert "environment" in data
    assert "timestamp" in data


def test_health_endpoint_needs_no_credentials(fake_zoom) -> None:  # type: ignore[no-untyped-def]
    response = client.get("/api/health")

    assert response.status_code == 200
    assert fake_zoom.requests == []


def test_health_reports_degraded_ledger() -> None:
    status = HealthService(Settings(), ledger=_UnreachableLedger()).get_status()

    assert status.status == "degraded"
    assert status.ledger == "unavailable"
