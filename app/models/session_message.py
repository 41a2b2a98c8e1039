"""SessionMessage model: one row per inbound or outbound message in a session."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db import Base, JSONType
from app.utils.dates import utcnow


class SessionMessage(Base):
    """One row per message; direction is 'inbound' (from the user) or 'outbound' (our reply).

    provider_message_id (the WhatsApp wamid) is unique, which makes inbound
    inserts idempotent under webhook redelivery.
    """

    __tablename__ = "session_messages"

    __table_args__ = (
        Index("ix_session_messages_session_id_created_at", "session_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid,
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    direction = Column(String(16), nullable=False)  # 'inbound' | 'outbound'
    message_type = Column(String(32), nullable=False, default="text")
    content = Column(Text, nullable=True)
    media_ref = Column(String(256), nullable=True)
    provider_message_id = Column(String(256), nullable=True, unique=True)
    reply_to = Column(String(256), nullable=True)
    extra = Column(
        "metadata", JSONType, nullable=True
    )  # DB column "metadata"; avoid shadowing Base.metadata
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    session = relationship("Session", back_populates="messages")

    @property
    def message_metadata(self) -> dict | None:
        """Expose DB column 'metadata' for Pydantic/serialization (avoid shadowing Base.metadata)."""
        return self.extra
