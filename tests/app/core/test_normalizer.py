"""Tests for WhatsApp message normalization and payload extraction."""

import pytest
from pydantic import ValidationError

from app.core.normalizer import (
    describe_ignored_payload,
    extract_first_message,
    extract_interactive_reply,
    idempotency_key,
    normalize,
)
from app.schemas.whatsapp import WhatsAppContact, WhatsAppWebhookPayload
from tests.fixtures.whatsapp_fixtures import webhook_payload, whatsapp_message


def test_text_message():
    message = normalize(whatsapp_message(body="hola", timestamp="1700000000"))
    assert message.kind == "text"
    assert message.text_content == "hola"
    assert message.sender == "573001112233"
    assert message.external_message_id == "wamid.TEST1"
    assert message.received_at_millis == 1700000000000
    assert message.media_ref is None
    assert message.raw_payload["text"] == {"body": "hola"}


@pytest.mark.parametrize("kind", ["image", "document", "video"])
def test_media_with_caption(kind):
    raw = whatsapp_message(
        kind=kind, **{kind: {"id": "MEDIA_9", "mime_type": "application/pdf", "caption": "ver"}}
    )
    message = normalize(raw)
    assert message.kind == kind
    assert message.text_content == "ver"
    assert message.media_ref == "MEDIA_9"
    assert message.media_mime_type == "application/pdf"


def test_audio_and_sticker_carry_no_text():
    audio = normalize(whatsapp_message(kind="audio", audio={"id": "A1", "mime_type": "audio/ogg"}))
    assert audio.text_content is None
    assert audio.media_ref == "A1"
    sticker = normalize(whatsapp_message(kind="sticker", sticker={"id": "S1"}))
    assert sticker.kind == "sticker"
    assert sticker.media_ref == "S1"


def test_location_text():
    message = normalize(
        whatsapp_message(
            kind="location",
            location={"latitude": 4.6, "longitude": -74.1, "name": "Oficina", "address": "Cra 7"},
        )
    )
    assert message.text_content == "Oficina, Cra 7"


def test_unknown_type_is_kept_without_content():
    message = normalize(whatsapp_message(kind="ephemeral_poll", ephemeral_poll={"q": 1}))
    assert message.kind == "ephemeral_poll"
    assert message.text_content is None
    assert message.media_ref is None


def test_missing_type_becomes_unknown():
    message = normalize({"from": "573001112233", "id": "wamid.X", "timestamp": "bad"})
    assert message.kind == "unknown"
    assert message.received_at_millis > 0


def test_reply_context_and_contact_name():
    raw = whatsapp_message(context={"from": "15550001111", "id": "wamid.PREV"})
    contact = WhatsAppContact(wa_id="573001112233", profile={"name": "Ana"})
    message = normalize(raw, contact)
    assert message.conversation_hint == "wamid.PREV"
    assert message.sender_name == "Ana"


def test_interactive_button_reply():
    raw = whatsapp_message(
        kind="interactive",
        interactive={
            "type": "button_reply",
            "button_reply": {"id": "action:schedule_confirm", "title": "Confirmar"},
        },
    )
    reply = extract_interactive_reply(raw)
    assert reply.id == "action:schedule_confirm"
    assert reply.reply_type == "button_reply"
    assert normalize(raw).text_content == "Confirmar"


def test_interactive_list_reply_without_title_uses_id():
    raw = whatsapp_message(
        kind="interactive",
        interactive={"type": "list_reply", "list_reply": {"id": "row_2"}},
    )
    assert normalize(raw).text_content == "row_2"


def test_malformed_interactive_is_not_a_reply():
    raw = whatsapp_message(kind="interactive", interactive={"type": "button_reply"})
    assert extract_interactive_reply(raw) is None
    assert normalize(raw).text_content is None


def test_extract_first_message_picks_matching_contact():
    payload = WhatsAppWebhookPayload.model_validate(
        webhook_payload(
            whatsapp_message(sender="573009998877"),
            whatsapp_message(sender="573001112233", message_id="wamid.TEST2"),
            contacts=[
                {"wa_id": "573001112233", "profile": {"name": "Luis"}},
                {"wa_id": "573009998877", "profile": {"name": "Ana"}},
            ],
        )
    )
    extracted = extract_first_message(payload)
    assert extracted.message.from_ == "573009998877"
    assert extracted.contact.profile.name == "Ana"
    assert extracted.phone_number_id == "PHONE_ID"


def test_extract_first_message_rejects_malformed_sender():
    payload = WhatsAppWebhookPayload.model_validate(
        webhook_payload(whatsapp_message(sender="not-a-phone"))
    )
    with pytest.raises(ValidationError):
        extract_first_message(payload)


@pytest.mark.parametrize(
    "payload,reason",
    [
        (webhook_payload(statuses=[{"id": "wamid.1", "status": "read"}]), "status_update"),
        (webhook_payload(field="account_update"), "unhandled_field:account_update"),
        (webhook_payload(), "no_messages"),
        ({"object": "whatsapp_business_account", "entry": []}, "no_changes"),
    ],
)
def test_ignored_payloads(payload, reason):
    parsed = WhatsAppWebhookPayload.model_validate(payload)
    assert extract_first_message(parsed) is None
    assert describe_ignored_payload(parsed) == reason


def test_idempotency_key_prefers_provider_id():
    message = normalize(whatsapp_message(message_id="wamid.ABC"))
    assert idempotency_key(message, "conv-1") == "wamid.ABC"

    anonymous = message.model_copy(update={"external_message_id": ""})
    key = idempotency_key(anonymous, "conv-1")
    assert key == f"conv-1:573001112233:text:{message.received_at_millis}"
    assert idempotency_key(anonymous, "conv-1") == key
