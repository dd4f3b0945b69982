"""HMAC request signing for outbound webhooks.

The signed string is ``"{timestamp}.{raw_body}"`` and the header value is
``"sha256=<hex digest>"``.  Receivers recompute the digest from the raw
request body and the ``X-Webhook-Timestamp`` header and compare in constant
time; the timestamp bounds how long a captured request can be replayed.
"""

import hashlib
import hmac
import secrets
import time
from typing import Optional

ALGORITHM = "sha256"
SECRET_PREFIX = "whsec_"

# 32 random bytes = 256 bits of entropy.
SECRET_BYTES = 32

SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"


def generate_secret() -> str:
    """Return a new endpoint signing secret."""
    return SECRET_PREFIX + secrets.token_urlsafe(SECRET_BYTES)


def _to_bytes(raw_body: str | bytes) -> bytes:
    if isinstance(raw_body, str):
        return raw_body.encode("utf-8")
    return raw_body


def compute_digest(secret: str, timestamp: int, raw_body: str | bytes) -> str:
    """HMAC-SHA256 hex digest of ``"{timestamp}.{raw_body}"``."""
    message = str(int(timestamp)).encode("ascii") + b"." + _to_bytes(raw_body)
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign(secret: str, timestamp: int, raw_body: str | bytes) -> str:
    """Compute the signature header value for a request body."""
    return f"{ALGORITHM}={compute_digest(secret, timestamp, raw_body)}"


def signature_headers(
    secret: str, raw_body: str | bytes, timestamp: Optional[int] = None,
) -> dict[str, str]:
    """Signature and timestamp headers for one outbound request."""
    if timestamp is None:
        timestamp = int(time.time())
    return {
        SIGNATURE_HEADER: sign(secret, timestamp, raw_body),
        TIMESTAMP_HEADER: str(int(timestamp)),
    }


def verify(
    secret: str,
    timestamp: int | str,
    raw_body: str | bytes,
    signature: str,
    tolerance: int = 300,
    now: Optional[float] = None,
) -> bool:
    """Verify a signature header as a receiver would.

    Returns False for a malformed header, an unknown algorithm, a timestamp
    more than ``tolerance`` seconds away from ``now`` (in either direction),
    or a digest mismatch.  Pass ``tolerance=0`` to skip the freshness check.
    """
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        return False

    algorithm, sep, digest = signature.partition("=")
    if not sep or algorithm != ALGORITHM or not digest:
        return False

    if tolerance > 0:
        current = time.time() if now is None else now
        if abs(current - ts) > tolerance:
            return False

    expected = compute_digest(secret, ts, raw_body)
    return hmac.compare_digest(expected, digest)
