"""HMAC-SHA256 signing for webhook payloads.

Subscribers verify the X-Webhook-Signature header by recomputing the
digest over the raw request body with their shared secret. Subscribers
without a secret receive unsigned deliveries.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"


def _to_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(payload: bytes | str, secret: str) -> str:
    """Compute the hex HMAC-SHA256 digest of a payload.

    Args:
        payload: Exact bytes transmitted (str is encoded as UTF-8).
        secret: Shared secret for HMAC.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=_to_bytes(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify(payload: bytes | str, signature: str, secret: str) -> bool:
    """Verify a hex HMAC-SHA256 signature in constant time.

    Malformed signatures compare unequal instead of raising.

    Args:
        payload: Payload that was signed.
        signature: Hex digest received with the payload.
        secret: Shared secret for HMAC.

    Returns:
        True if the signature matches.
    """
    expected = sign(payload, secret)
    try:
        received = signature.encode("ascii")
    except (AttributeError, UnicodeEncodeError):
        return False
    return hmac.compare_digest(expected.encode("ascii"), received)


__all__ = ["SIGNATURE_HEADER", "sign", "verify"]
