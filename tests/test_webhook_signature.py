import hashlib
import hmac

import pytest

from meeting_proxy.services.errors import SignatureError
from meeting_proxy.services.webhook_signature import (
    build_url_validation_token,
    compute_signature,
    verify_signature,
)

SECRET = "secret"
RAW_BODY = b'{"event":"meeting.ended","payload":{}}'


def test_compute_signature_uses_v0_scheme() -> None:
    expected = hmac.new(b"secret", b"v0:1700000000:" + RAW_BODY, hashlib.sha256).hexdigest()

    assert compute_signature(SECRET, "1700000000", RAW_BODY) == f"v0={expected}"


def test_verify_signature_accepts_fresh_valid_signature() -> None:
    signature = compute_signature(SECRET, "1700000000", RAW_BODY)

    verify_signature(
        secret=SECRET,
        signature=signature,
        timestamp="1700000000",
        raw_body=RAW_BODY,
        now=1700000100,
    )


def test_verify_signature_rejects_reformatted_body() -> None:
    signature = compute_signature(SECRET, "1700000000", RAW_BODY)

    with pytest.raises(SignatureError):
        verify_signature(
            secret=SECRET,
            signature=signature,
            timestamp="1700000000",
            raw_body=b'{"event": "meeting.ended", "payload": {}}',
            now=1700000000,
        )


@pytest.mark.parametrize("offset", [-301, 301])
def test_verify_signature_rejects_timestamps_outside_window(offset: int) -> None:
    signature = compute_signature(SECRET, "1700000000", RAW_BODY)

    with pytest.raises(SignatureError):
        verify_signature(
            secret=SECRET,
            signature=signature,
            timestamp="1700000000",
            raw_body=RAW_BODY,
            now=1700000000 + offset,
        )


@pytest.mark.parametrize(
    ("signature", "timestamp"),
    [(None, "1700000000"), ("v0=abc", None), ("v0=abc", "not-a-number")],
)
def test_verify_signature_rejects_missing_or_malformed_headers(signature: str | None, timestamp: str | None) -> None:
    with pytest.raises(SignatureError):
        verify_signature(
            secret=SECRET,
            signature=signature,
            timestamp=timestamp,
            raw_body=RAW_BODY,
            now=1700000000,
        )


def test_url_validation_token_is_hex_hmac_of_plain_token() -> None:
    expected = hmac.new(b"secret", b"qgg8vlvZRS6UYooatFL8Aw", hashlib.sha256).hexdigest()

    assert build_url_validation_token(SECRET, "qgg8vlvZRS6UYooatFL8Aw") == expected
