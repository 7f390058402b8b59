"""HMAC request signing shared by the event bus and the webhook.

Header format: ``X-Signature: t=<unix seconds>&s=<hex hmac-sha256>`` where the
MAC covers ``"{t}.{raw body}"``.
"""

import hashlib
import hmac
import time
from typing import Optional
from urllib.parse import parse_qs

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Signature"


def _mac(key: str, timestamp: int, body: bytes) -> str:
    message = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign(key: str, body: bytes, timestamp: Optional[int] = None) -> str:
    """Build the X-Signature header value for a request body."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts}&s={_mac(key, ts, body)}"


def verify(
    key: str,
    body: bytes,
    header: Optional[str],
    tolerance_s: int = 300,
    now: Optional[float] = None,
) -> bool:
    """Check a signature header. Stale, malformed and mismatched headers fail."""
    if not header:
        logger.debug("signature_invalid", reason="missing")
        return False

    parts = parse_qs(header)
    try:
        timestamp = int(parts["t"][0])
        provided = parts["s"][0]
    except (KeyError, IndexError, ValueError):
        logger.debug("signature_invalid", reason="malformed")
        return False

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_s:
        logger.debug("signature_invalid", reason="stale", age_s=int(current - timestamp))
        return False

    if not hmac.compare_digest(_mac(key, timestamp, body), provided):
        logger.debug("signature_invalid", reason="signature_mismatch")
        return False
    return True
