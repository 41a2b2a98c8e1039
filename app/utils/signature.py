"""
Webhook signature validation (X-Hub-Signature-256).

The provider signs the raw request body with HMAC-SHA256 using the app
secret and sends ``sha256=<hex>``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Mapping, Optional

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
SIGNATURE_PREFIX = "sha256="


def escape_non_ascii(body: str) -> str:
    """Rewrite every non-ASCII UTF-16 code unit as a lowercase ``\\uXXXX`` escape.

    Astral characters become two escapes (one per surrogate), matching how
    JSON encoders that escape unicode emit them.
    """
    out = []
    for ch in body:
        code = ord(ch)
        if code < 0x80:
            out.append(ch)
        elif code <= 0xFFFF:
            out.append(f"\\u{code:04x}")
        else:
            code -= 0x10000
            out.append(f"\\u{0xD800 + (code >> 10):04x}")
            out.append(f"\\u{0xDC00 + (code & 0x3FF):04x}")
    return "".join(out)


def compute_signature(raw_body: bytes, shared_secret: str, escape_unicode: bool = False) -> str:
    """Return the hex HMAC-SHA256 digest the provider would send for ``raw_body``."""
    payload = raw_body
    if escape_unicode:
        payload = escape_non_ascii(raw_body.decode("utf-8")).encode("ascii")
    return hmac.new(shared_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def validate_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    shared_secret: Optional[str],
    *,
    escape_unicode: bool = False,
) -> bool:
    """Constant-time check of ``signature_header`` against the body digest.

    Returns False (never raises) on a missing, malformed or mismatching header.
    """
    if not signature_header or not shared_secret:
        return False
    try:
        if not signature_header.startswith(SIGNATURE_PREFIX):
            return False
        received = signature_header[len(SIGNATURE_PREFIX):].strip().lower()
        expected = compute_signature(raw_body, shared_secret, escape_unicode)
        return hmac.compare_digest(received.encode("ascii"), expected.encode("ascii"))
    except (UnicodeError, ValueError, TypeError) as e:
        logger.warning("Webhook signature check failed on malformed input: %s", e)
        return False


def verify_webhook_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    settings: Settings | None = None,
) -> bool:
    """Validate the request signature, applying the environment policy.

    With no app secret or no signature header the request is rejected in
    production and let through (with a warning) everywhere else.
    """
    settings = settings or get_settings()
    secret = settings.whatsapp_app_secret
    header = None
    for key, value in headers.items():
        if key.lower() == SIGNATURE_HEADER:
            header = value
            break
    if not secret or not header:
        if settings.is_production:
            logger.error(
                "Rejecting webhook: %s",
                "WHATSAPP_APP_SECRET not configured" if not secret else "missing signature header",
            )
            return False
        logger.warning(
            "Skipping webhook signature validation outside production (%s)",
            "no app secret" if not secret else "no signature header",
        )
        return True
    return validate_signature(
        raw_body,
        header,
        secret,
        escape_unicode=settings.whatsapp_signature_escape_unicode,
    )
