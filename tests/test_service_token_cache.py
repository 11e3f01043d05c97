import threading
import time
from urllib import parse

import pytest

from meeting_proxy.services.errors import ConfigurationError
from meeting_proxy.services.service_token_cache import (
    ServiceTokenCache,
    request_account_credentials_token,
)
from zoom_fakes import FakeZoomApi


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_token_is_reused_until_refresh_margin() -> None:
    clock = _Clock()
    issued: list[str] = []

    def fetch_token() -> tuple[str, float]:
        issued.append(f"token-{len(issued) + 1}")
        return issued[-1], 3600

    cache = ServiceTokenCache(fetch_token, refresh_margin_seconds=300, clock=clock)

    assert cache.get() == "token-1"
    clock.now += 3299
    assert cache.get() == "token-1"
    clock.now += 2
    assert cache.get() == "token-2"


def test_concurrent_callers_share_one_refresh() -> None:
    fetch_count = 0
    count_lock = threading.Lock()

    def slow_fetch() -> tuple[str, float]:
        nonlocal fetch_count
        with count_lock:
            fetch_count += 1
        time.sleep(0.05)
        return "shared-token", 3600

    cache = ServiceTokenCache(slow_fetch)
    barrier = threading.Barrier(8)
    results: list[str] = []

    def worker() -> None:
        barrier.wait()
        results.append(cache.get())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert fetch_count == 1
    assert results == ["shared-token"] * 8


def test_invalidate_ignores_tokens_already_replaced() -> None:
    issued: list[str] = []

    def fetch_token() -> tuple[str, float]:
        issued.append(f"token-{len(issued) + 1}")
        return issued[-1], 3600

    cache = ServiceTokenCache(fetch_token)
    first = cache.get()
    cache.invalidate(first)
    second = cache.get()
    cache.invalidate(first)

    assert second == "token-2"
    assert cache.get() == "token-2"


def test_account_credentials_exchange_sends_basic_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}
    fake = FakeZoomApi()

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["authorization"] = req.headers["Authorization"]
        captured["body"] = parse.parse_qs(req.data.decode("utf-8"))
        return fake.urlopen(req, timeout)

    monkeypatch.setattr("meeting_proxy.services.service_token_cache.request.urlopen", fake_urlopen)

    token, expires_in = request_account_credentials_token(
        token_url="https://zoom.us/oauth/token",
        account_id="acct",
        client_id="client",
        client_secret="secret",
    )

    assert token == "service-token"
    assert expires_in == 3600
    assert captured["authorization"] == "Basic Y2xpZW50OnNlY3JldA=="
    assert captured["body"] == {"grant_type": ["account_credentials"], "account_id": ["acct"]}


def test_account_credentials_exchange_requires_configuration() -> None:
    with pytest.raises(ConfigurationError):
        request_account_credentials_token(
            token_url="https://zoom.us/oauth/token",
            account_id="",
            client_id="client",
            client_secret="secret",
        )
