"""
WhatsApp Cloud API webhook payload schemas.

Matches the structure Meta posts to the webhook endpoint. Only the parts the
pipeline reads are typed; everything else is kept via ``extra="allow"`` and
travels along in ``NormalizedMessage.raw_payload``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WHATSAPP_OBJECT = "whatsapp_business_account"
MESSAGES_FIELD = "messages"

PHONE_PATTERN = r"^\+?\d{6,15}$"


class WhatsAppProfile(BaseModel):
    name: Optional[str] = None


class WhatsAppContact(BaseModel):
    """Sender contact block (value.contacts[])."""

    wa_id: str
    profile: Optional[WhatsAppProfile] = None

    model_config = ConfigDict(extra="allow")


class WhatsAppMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: str


class WhatsAppMessageContext(BaseModel):
    """Reply context (message.context): the message being replied to."""

    id: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class WhatsAppMessage(BaseModel):
    """One inbound message (value.messages[]). Per-type content stays in extras."""

    id: str = Field(min_length=1)
    from_: str = Field(alias="from", pattern=PHONE_PATTERN)
    timestamp: str
    type: str
    context: Optional[WhatsAppMessageContext] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_raw(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class WhatsAppStatus(BaseModel):
    """Delivery/read receipt (value.statuses[])."""

    id: str
    status: str
    timestamp: Optional[str] = None
    recipient_id: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class WhatsAppValue(BaseModel):
    """Payload of a ``messages`` change."""

    messaging_product: Literal["whatsapp"]
    metadata: WhatsAppMetadata
    contacts: list[WhatsAppContact] = Field(default_factory=list)
    messages: list[WhatsAppMessage] = Field(default_factory=list)
    statuses: list[WhatsAppStatus] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class WhatsAppChange(BaseModel):
    """entry.changes[]. ``value`` is only typed for ``messages`` changes."""

    field: str
    value: dict[str, Any] = Field(default_factory=dict)

    def messages_value(self) -> Optional[WhatsAppValue]:
        """Validated value for a ``messages`` change, None for other fields.

        Raises pydantic.ValidationError when a messages change is malformed.
        """
        if self.field != MESSAGES_FIELD:
            return None
        return WhatsAppValue.model_validate(self.value)


class WhatsAppEntry(BaseModel):
    id: str
    changes: list[WhatsAppChange] = Field(default_factory=list)


class WhatsAppWebhookPayload(BaseModel):
    """Webhook payload (root object)."""

    object: Literal["whatsapp_business_account"]
    entry: list[WhatsAppEntry] = Field(default_factory=list)


class ButtonReply(BaseModel):
    id: str = Field(min_length=1)
    title: Optional[str] = None


class ListReply(BaseModel):
    id: str = Field(min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None


class InteractiveContent(BaseModel):
    """message.interactive for button/list replies (cta_url carries no id)."""

    type: Literal["button_reply", "list_reply", "cta_url", "nfm_reply"]
    button_reply: Optional[ButtonReply] = None
    list_reply: Optional[ListReply] = None

    model_config = ConfigDict(extra="allow")


class ExtractedMessage(BaseModel):
    """First message of a payload together with its sender contact."""

    message: WhatsAppMessage
    contact: Optional[WhatsAppContact] = None
    phone_number_id: Optional[str] = None
