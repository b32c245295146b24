"""Security helpers for webhook validation and request tracing."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

SIGNATURE_PREFIX = "sha256="


def build_github_signature(secret: str, payload: bytes) -> str:
    """Return the GitHub-style HMAC signature for the given payload."""

    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_github_signature(secret: str, payload: bytes, raw_signature: str | None) -> bool:
    """Verify a GitHub webhook signature using a constant-time comparison.

    Only the lengths may short-circuit the comparison, never the content.
    """

    if not raw_signature or not secret:
        return False

    expected_signature = build_github_signature(secret, payload)
    return hmac.compare_digest(expected_signature.encode("ascii"), raw_signature.encode("utf-8"))


def request_token() -> str:
    """Return a random 24 character url-safe token (144 bits)."""

    return base64.urlsafe_b64encode(secrets.token_bytes(18)).decode("ascii").rstrip("=")
