"""HMAC-SHA256 verification of inbound Retell webhooks.

Retell signs the *exact* request bytes with the shared signing secret and
sends the lowercase hex digest in the ``x-retell-signature`` header.  The
verifier must therefore run on the raw body, before it is parsed as JSON:
re-serialising the parsed payload would not reproduce the same bytes.

``verify_signature`` never raises.  Every failure (missing header, missing
secret, malformed hex, unexpected exception) resolves to ``False``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset("0123456789abcdef")


def sign(raw_body: bytes, secret: str) -> str:
    """Return the lowercase hex HMAC-SHA256 digest of *raw_body*."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: str | None,
) -> bool:
    """Check *signature_header* against the HMAC of *raw_body*.

    The header must match the lowercase hex digest exactly; case and
    surrounding whitespace are significant.  The length check happens
    before the constant-time comparison.
    """
    try:
        if not signature_header:
            logger.warning("Webhook rejected: missing signature header")
            return False
        if not secret:
            logger.error("Webhook rejected: signing secret is not configured")
            return False

        presented = signature_header
        expected = sign(raw_body, secret)

        if len(presented) != len(expected):
            logger.warning(
                "Webhook rejected: signature length mismatch (got=%d expected=%d)",
                len(presented), len(expected),
            )
            return False
        if not _HEX_DIGITS.issuperset(presented):
            logger.warning("Webhook rejected: signature is not hexadecimal")
            return False

        if not hmac.compare_digest(presented.encode("ascii"), expected.encode("ascii")):
            logger.warning("Webhook rejected: signature mismatch")
            return False
        return True

    except Exception:
        logger.exception("Error verifying webhook signature")
        return False
