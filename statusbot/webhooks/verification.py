"""Webhook signature verification: HMAC-SHA256 over the raw body.

Security contract:
- Header format is ``sha256=<hex>``; any other prefix fails closed
- Comparison uses hmac.compare_digest() (constant-time, no timing attacks)
- Empty secret -> verification always fails (fail-closed)
- The body is verified before it is parsed
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: bytes | str) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def compute_signature(body: bytes | str, secret: str) -> str:
    """HMAC-SHA256 hex digest of ``body`` keyed by ``secret``."""
    return hmac.new(_as_bytes(secret), _as_bytes(body), hashlib.sha256).hexdigest()


def validate_signature(body: bytes | str, signature_header: str | None, secret: str) -> bool:
    """Check ``signature_header`` against the expected digest of ``body``.

    Args:
        body: Raw request body, exactly as received
        signature_header: Value of the x-webhook-signature header
        secret: Shared secret; empty means unconfigured

    Returns:
        True if the header is ``sha256=<hex>`` and the digest matches
    """
    if not secret or not signature_header:
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    provided = signature_header[len(SIGNATURE_PREFIX) :]
    expected = compute_signature(body, secret)
    return hmac.compare_digest(_as_bytes(provided), _as_bytes(expected))


def verify_webhook(body: bytes, headers: Mapping[str, str], secret: str) -> bool:
    """Verify an inbound webhook request.

    Args:
        body: Raw request body
        headers: Request headers (any case)
        secret: Deployment's webhook secret

    Returns:
        True if signature is valid
    """
    if not secret:
        logger.warning("WEBHOOK_SECRET not set, rejecting webhook")
        return False
    lowered = {k.lower(): v for k, v in headers.items()}
    return validate_signature(body, lowered.get(SIGNATURE_HEADER), secret)
