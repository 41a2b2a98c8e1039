"""Pydantic schemas for Session and SessionMessage."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SessionCreate(BaseModel):
    """Schema for creating a session."""

    session_key: str
    user_id: Optional[UUID] = None
    channel: str
    chat_id: str
    display_name: Optional[str] = None
    origin: Optional[dict[str, Any]] = None
    last_message_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class MessageCreate(BaseModel):
    """Schema for creating a session message."""

    direction: Literal["inbound", "outbound"]
    message_type: str = "text"
    content: Optional[str] = None
    media_ref: Optional[str] = None
    provider_message_id: Optional[str] = None
    reply_to: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
