"""Messaging window: WhatsApp's 24h customer-service window per user."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid

from app.db import Base
from app.models.mixins import TimestampMixin


class MessagingWindow(Base, TimestampMixin):
    """Free-form replies are allowed until window_expires_at; after it only templates."""

    __tablename__ = "messaging_windows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    phone_number = Column(String(32), nullable=False)
    window_opened_at = Column(DateTime(timezone=True), nullable=False)
    window_expires_at = Column(DateTime(timezone=True), nullable=False)
    last_user_message_id = Column(String(256), nullable=True)
