"""Webhook payload signing (HMAC-SHA256 over the exact request body)."""
from __future__ import annotations

import hashlib
import hmac


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(payload: str | bytes, secret: str) -> str:
    """Return the hex-encoded HMAC-SHA256 of the payload keyed by the secret."""
    return hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256).hexdigest()


def verify_signature(payload: str | bytes, signature: str | None, secret: str) -> bool:
    """
    Recompute the MAC over the raw payload and compare in constant time.

    Malformed or missing signatures verify as False rather than raising.
    """
    if not signature:
        return False
    try:
        received = bytes.fromhex(signature)
    except ValueError:
        return False
    expected = bytes.fromhex(sign_payload(payload, secret))
    return hmac.compare_digest(expected, received)
