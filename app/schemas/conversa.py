"""
Normalized message contracts.

Every inbound WhatsApp message is converted into a ``NormalizedMessage``
before persistence, routing or queueing. The shape is stable and independent
of downstream consumers.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class Channel(str, Enum):
    """Supported chat channels."""

    WHATSAPP = "whatsapp"


class MessageKind(str, Enum):
    """Provider message types the pipeline knows how to extract."""

    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"
    LOCATION = "location"
    INTERACTIVE = "interactive"
    BUTTON = "button"
    REACTION = "reaction"
    CONTACTS = "contacts"
    ORDER = "order"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class NormalizedMessage(BaseModel):
    """Canonical inbound unit (adapter -> core).

    ``kind`` is a plain string so unrecognized provider types pass through
    unchanged and can be routed as unsupported.
    """

    channel: Channel = Channel.WHATSAPP
    sender: str
    kind: str
    text_content: Optional[str] = None
    media_ref: Optional[str] = None
    media_mime_type: Optional[str] = None
    external_message_id: str = ""
    conversation_hint: Optional[str] = None
    received_at_millis: int
    sender_name: Optional[str] = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    def with_resolved_text(self, text: str) -> "NormalizedMessage":
        """Copy with ``text`` as content and kind ``text`` (interactive reply resolution)."""
        return self.model_copy(update={"text_content": text, "kind": MessageKind.TEXT.value})


class InteractiveReply(BaseModel):
    """Identifier and title picked by the user on a button or list reply."""

    reply_type: str
    id: str
    title: Optional[str] = None
    description: Optional[str] = None


class OutboundSendResult(BaseModel):
    """Result of sending an outbound message (success + optional message_id)."""

    success: bool
    platform_message_id: Optional[str] = None
