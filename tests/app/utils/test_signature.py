"""Tests for webhook signature validation."""

import hashlib
import hmac

import pytest

from app.config import Settings
from app.utils.signature import (
    compute_signature,
    escape_non_ascii,
    validate_signature,
    verify_webhook_signature,
)

SECRET = "s3cret"


def _header(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def test_valid_signature():
    body = b'{"object":"whatsapp_business_account"}'
    assert validate_signature(body, _header(body), SECRET) is True


def test_uppercase_hex_is_accepted():
    body = b"{}"
    header = _header(body)
    assert validate_signature(body, "sha256=" + header[7:].upper(), SECRET) is True


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "sha1=abcdef",
        "sha256=",
        "sha256=deadbeef",
        "sha256=ñññ",
        "sha256=" + "0" * 64,
    ],
)
def test_invalid_signatures_are_rejected(header):
    assert validate_signature(b"{}", header, SECRET) is False


def test_wrong_secret_or_missing_secret():
    body = b"{}"
    assert validate_signature(body, _header(body, "other"), SECRET) is False
    assert validate_signature(body, _header(body), None) is False


def test_escape_non_ascii_matches_json_escaping():
    assert escape_non_ascii("hola") == "hola"
    assert escape_non_ascii("canción") == "canci\\u00f3n"
    assert escape_non_ascii("👍") == "\\ud83d\\udc4d"


def test_escape_unicode_mode_signs_the_escaped_body():
    body = '{"text":"canción"}'.encode("utf-8")
    escaped = b'{"text":"canci\\u00f3n"}'
    header = _header(escaped)
    assert validate_signature(body, header, SECRET, escape_unicode=True) is True
    assert validate_signature(body, header, SECRET) is False
    assert compute_signature(body, SECRET, escape_unicode=True) == header[7:]


def test_verify_webhook_signature_reads_header_case_insensitively():
    settings = Settings(ENV="development", whatsapp_app_secret=SECRET)
    body = b"{}"
    assert verify_webhook_signature(body, {"X-Hub-Signature-256": _header(body)}, settings)
    assert not verify_webhook_signature(body, {"x-hub-signature-256": "sha256=00"}, settings)


def test_missing_secret_allowed_outside_production():
    settings = Settings(ENV="development", whatsapp_app_secret=None)
    assert verify_webhook_signature(b"{}", {}, settings) is True


def test_missing_secret_or_header_rejected_in_production():
    no_secret = Settings(ENV="production", whatsapp_app_secret=None)
    assert verify_webhook_signature(b"{}", {"X-Hub-Signature-256": _header(b"{}")}, no_secret) is False

    with_secret = Settings(ENV="production", whatsapp_app_secret=SECRET)
    assert verify_webhook_signature(b"{}", {}, with_secret) is False
