from __future__ import annotations

import hashlib
import hmac
import time

from meeting_proxy.services.errors import SignatureError

SIGNATURE_VERSION = "v0"
DEFAULT_TIMESTAMP_TOLERANCE_SECONDS = 300


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + raw_body
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_signature(
    *,
    secret: str,
    signature: str | None,
    timestamp: str | None,
    raw_body: bytes,
    tolerance_seconds: int = DEFAULT_TIMESTAMP_TOLERANCE_SECONDS,
    now: float | None = None,
) -> None:
    if not signature or not timestamp:
        raise SignatureError("Missing webhook signature or timestamp.")

    try:
        timestamp_seconds = int(timestamp.strip())
    except ValueError as exc:
        raise SignatureError("Webhook timestamp is not a valid integer.") from exc

    current_seconds = int(now if now is not None else time.time())
    if abs(current_seconds - timestamp_seconds) > tolerance_seconds:
        raise SignatureError("Webhook timestamp is outside the accepted window.")

    expected_signature = compute_signature(secret, timestamp.strip(), raw_body)
    if not hmac.compare_digest(expected_signature.encode("utf-8"), signature.strip().encode("utf-8")):
        raise SignatureError("Invalid webhook signature.")


def build_url_validation_token(secret: str, plain_token: str) -> str:
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=plain_token.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()
