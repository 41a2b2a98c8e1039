"""
AgentEvent model: durable queue of inbound messages awaiting agent processing.

idempotency_key is unique, so a redelivered webhook cannot enqueue twice.
Rows move pending -> processing through a conditional UPDATE (the claim),
then to done, back to pending with a later available_at, or to failed.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Uuid

from app.db import Base, JSONType
from app.models.mixins import TimestampMixin
from app.utils.dates import utcnow

EVENT_STATUS_PENDING = "pending"
EVENT_STATUS_PROCESSING = "processing"
EVENT_STATUS_DONE = "done"
EVENT_STATUS_FAILED = "failed"

EVENT_SOURCE_WHATSAPP = "whatsapp_webhook"


class AgentEvent(Base, TimestampMixin):
    __tablename__ = "agent_events"

    __table_args__ = (
        Index("ix_agent_events_status_available_at", "status", "available_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    source = Column(String(64), nullable=False, default=EVENT_SOURCE_WHATSAPP)
    input_type = Column(String(32), nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    idempotency_key = Column(String(512), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=EVENT_STATUS_PENDING)
    attempt_count = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
