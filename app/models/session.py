"""Session model: one row per conversation (channel + sender phone)."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import relationship

from app.db import Base, JSONType
from app.models.mixins import TimestampMixin
from app.utils.dates import utcnow


class Session(Base, TimestampMixin):
    """One row per conversation. Identified by session_key (e.g. whatsapp:573001112233)."""

    __tablename__ = "sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_key = Column(String(512), unique=True, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    channel = Column(String(64), nullable=False)
    chat_id = Column(String(256), nullable=False)
    display_name = Column(String(256), nullable=True)
    origin = Column(JSONType, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    messages = relationship(
        "SessionMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionMessage.created_at",
    )
