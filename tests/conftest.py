import pytest

from meeting_proxy.core.config import get_settings
from meeting_proxy.services.access_rule_store import clear_access_rule_store_cache
from meeting_proxy.services.participation_ledger import clear_participation_ledger_cache
from meeting_proxy.services.service_token_cache import clear_service_token_cache
from zoom_fakes import RETENTION_TOKEN, WEBHOOK_SECRET, FakeZoomApi


def _clear_caches() -> None:
    clear_participation_ledger_cache()
    clear_access_rule_store_cache()
    clear_service_token_cache()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGER_STORE", "memory")
    monkeypatch.setenv("ZOOM_WEBHOOK_SECRET_TOKEN", WEBHOOK_SECRET)
    monkeypatch.setenv("ZOOM_ADMIN_ACCOUNT_ID", "account-id")
    monkeypatch.setenv("ZOOM_ADMIN_CLIENT_ID", "client-id")
    monkeypatch.setenv("ZOOM_ADMIN_CLIENT_SECRET", "client-secret")
    monkeypatch.setenv("ZOOM_API_BASE_URL", "https://api.zoom.us/v2")
    monkeypatch.setenv("ZOOM_UPSTREAM_MAX_RETRIES", "0")
    monkeypatch.setenv("RETENTION_JOB_TOKEN", RETENTION_TOKEN)

    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture
def fake_zoom(monkeypatch: pytest.MonkeyPatch) -> FakeZoomApi:
    fake = FakeZoomApi()
    monkeypatch.setattr("meeting_proxy.services.zoom_admin_client.request.urlopen", fake.urlopen)
    return fake
