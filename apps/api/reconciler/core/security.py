"""Webhook authenticity checks."""

import hashlib
import hmac


def compute_hmac_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_hmac_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """
    Verify a hex HMAC-SHA256 signature header against the raw request body.

    The digest is computed over the exact bytes received. Re-serializing the
    parsed JSON can reorder keys or change whitespace, so callers must pass
    ``await request.body()`` and not a dumped payload.

    Accepts an optional ``sha256=`` prefix on the header value.
    Returns False on a missing header, a missing secret, a header that is
    not valid hex, or a mismatch.
    """
    if not signature or not secret:
        return False

    value = signature.strip()
    if value.lower().startswith("sha256="):
        value = value[len("sha256="):]

    try:
        provided = bytes.fromhex(value)
    except ValueError:
        return False

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)
