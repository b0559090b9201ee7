"""API key hashing and Meta webhook signature verification."""

import hashlib
import hmac
import secrets

from app.core.config import settings

SIGNATURE_PREFIX = "sha256="


def hash_api_key(raw_key: str) -> str:
    """SHA-256 hash of raw API key for storage."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str]:
    """Generate a new API key. Returns (raw_key, hashed_key)."""
    raw = f"{settings.api_key_prefix}{secrets.token_urlsafe(32)}"
    hashed = hash_api_key(raw)
    return raw, hashed


def verify_api_key(raw_key: str, stored_hash: str) -> bool:
    """Verify a raw API key against its stored hash."""
    return hmac.compare_digest(hash_api_key(raw_key), stored_hash)


def sign_payload(raw_body: bytes, app_secret: str) -> str:
    """Compute the X-Hub-Signature-256 header value for a body."""
    digest = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: str | None,
    app_secret: str,
) -> bool:
    """Check a Meta webhook signature header ("sha256=<hex>").

    Returns False for a missing or malformed header instead of raising.
    """
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign_payload(raw_body, app_secret)
    return hmac.compare_digest(expected, signature_header)
