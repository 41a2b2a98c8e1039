"""
WhatsApp message normalization.

``normalize`` is total: every raw message yields a ``NormalizedMessage``.
Unknown types keep their raw ``type`` as ``kind`` with no text or media so
the router can send them to the unsupported pathway.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from app.schemas.conversa import InteractiveReply, MessageKind, NormalizedMessage
from app.schemas.whatsapp import (
    ExtractedMessage,
    InteractiveContent,
    WhatsAppContact,
    WhatsAppWebhookPayload,
)

MEDIA_KINDS = {
    MessageKind.IMAGE.value,
    MessageKind.AUDIO.value,
    MessageKind.VIDEO.value,
    MessageKind.DOCUMENT.value,
    MessageKind.STICKER.value,
}


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _text_body(raw: dict[str, Any]) -> Optional[str]:
    return _str_or_none(_as_dict(raw.get("text")).get("body"))


def _media_caption(raw: dict[str, Any]) -> Optional[str]:
    media = _as_dict(raw.get(raw.get("type")))
    return _str_or_none(media.get("caption"))


def _interactive_text(raw: dict[str, Any]) -> Optional[str]:
    reply = extract_interactive_reply(raw)
    if reply is None:
        return None
    return reply.title or reply.id


def _button_text(raw: dict[str, Any]) -> Optional[str]:
    button = _as_dict(raw.get("button"))
    return _str_or_none(button.get("text")) or _str_or_none(button.get("payload"))


def _location_text(raw: dict[str, Any]) -> Optional[str]:
    location = _as_dict(raw.get("location"))
    parts = [p for p in (location.get("name"), location.get("address")) if _str_or_none(p)]
    return ", ".join(parts) if parts else None


def _reaction_text(raw: dict[str, Any]) -> Optional[str]:
    return _str_or_none(_as_dict(raw.get("reaction")).get("emoji"))


_TEXT_EXTRACTORS: dict[str, Callable[[dict[str, Any]], Optional[str]]] = {
    MessageKind.TEXT.value: _text_body,
    MessageKind.IMAGE.value: _media_caption,
    MessageKind.VIDEO.value: _media_caption,
    MessageKind.DOCUMENT.value: _media_caption,
    MessageKind.AUDIO.value: lambda raw: None,
    MessageKind.STICKER.value: lambda raw: None,
    MessageKind.INTERACTIVE.value: _interactive_text,
    MessageKind.BUTTON.value: _button_text,
    MessageKind.LOCATION.value: _location_text,
    MessageKind.REACTION.value: _reaction_text,
    MessageKind.CONTACTS.value: lambda raw: None,
    MessageKind.ORDER.value: lambda raw: None,
    MessageKind.SYSTEM.value: lambda raw: _str_or_none(_as_dict(raw.get("system")).get("body")),
}


def extract_interactive_reply(raw: dict[str, Any]) -> Optional[InteractiveReply]:
    """Validate ``raw["interactive"]`` and pull the picked reply id. None if not a reply."""
    if raw.get("type") != MessageKind.INTERACTIVE.value:
        return None
    try:
        content = InteractiveContent.model_validate(raw.get("interactive"))
    except ValidationError:
        return None
    if content.type == "button_reply" and content.button_reply is not None:
        return InteractiveReply(
            reply_type=content.type,
            id=content.button_reply.id,
            title=content.button_reply.title,
        )
    if content.type == "list_reply" and content.list_reply is not None:
        return InteractiveReply(
            reply_type=content.type,
            id=content.list_reply.id,
            title=content.list_reply.title,
            description=content.list_reply.description,
        )
    return None


def _received_at_millis(raw: dict[str, Any]) -> int:
    try:
        return int(raw.get("timestamp")) * 1000
    except (TypeError, ValueError):
        return int(time.time() * 1000)


def normalize(
    raw: dict[str, Any],
    contact: Optional[WhatsAppContact] = None,
) -> NormalizedMessage:
    """Convert one raw WhatsApp message dict into a NormalizedMessage."""
    raw = _as_dict(raw)
    kind = _str_or_none(raw.get("type")) or MessageKind.UNKNOWN.value
    extractor = _TEXT_EXTRACTORS.get(kind)
    text = extractor(raw) if extractor is not None else None

    media_ref = None
    media_mime_type = None
    if kind in MEDIA_KINDS:
        media = _as_dict(raw.get(kind))
        media_ref = _str_or_none(media.get("id"))
        media_mime_type = _str_or_none(media.get("mime_type"))

    sender_name = None
    if contact is not None and contact.profile is not None:
        sender_name = contact.profile.name

    return NormalizedMessage(
        sender=str(raw.get("from") or (contact.wa_id if contact else "")),
        kind=kind,
        text_content=text,
        media_ref=media_ref,
        media_mime_type=media_mime_type,
        external_message_id=str(raw.get("id") or ""),
        conversation_hint=_str_or_none(_as_dict(raw.get("context")).get("id")),
        received_at_millis=_received_at_millis(raw),
        sender_name=sender_name,
        raw_payload=raw,
    )


def extract_first_message(payload: WhatsAppWebhookPayload) -> Optional[ExtractedMessage]:
    """First inbound message in the payload, or None for status-only/other changes.

    Raises pydantic.ValidationError if a ``messages`` change is malformed.
    """
    for entry in payload.entry:
        for change in entry.changes:
            value = change.messages_value()
            if value is None or not value.messages:
                continue
            message = value.messages[0]
            contact = next(
                (c for c in value.contacts if c.wa_id == message.from_),
                value.contacts[0] if value.contacts else None,
            )
            return ExtractedMessage(
                message=message,
                contact=contact,
                phone_number_id=value.metadata.phone_number_id,
            )
    return None


def describe_ignored_payload(payload: WhatsAppWebhookPayload) -> str:
    """Reason string for payloads without an inbound message."""
    fields = [change.field for entry in payload.entry for change in entry.changes]
    if not fields:
        return "no_changes"
    for entry in payload.entry:
        for change in entry.changes:
            value = change.messages_value()
            if value is not None and value.statuses:
                return "status_update"
    if any(f != "messages" for f in fields):
        return f"unhandled_field:{fields[0]}"
    return "no_messages"


def idempotency_key(message: NormalizedMessage, conversation_id: Optional[str] = None) -> str:
    """Deterministic dedup key: the provider message id, else a composite."""
    if message.external_message_id:
        return message.external_message_id
    conversation = conversation_id or message.conversation_hint or "none"
    return f"{conversation}:{message.sender}:{message.kind}:{message.received_at_millis}"
