"""
AgentRun / AgentStep models: append-only audit trail of ledger processing.

One run per claimed event (created running, closed completed/failed), with
ordered steps recorded once each.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from app.db import Base, JSONType
from app.utils.dates import utcnow

RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"

STEP_STATUS_OK = "ok"
STEP_STATUS_ERROR = "error"
STEP_STATUS_SKIPPED = "skipped"

GRAPH_VERSION = "v1"


class AgentRun(Base):
    __tablename__ = "agent_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(
        Uuid, ForeignKey("agent_events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conversation_id = Column(Uuid, nullable=False)
    user_id = Column(Uuid, nullable=False)
    status = Column(String(32), nullable=False, default=RUN_STATUS_RUNNING)
    input_class = Column(String(64), nullable=True)
    graph_version = Column(String(16), nullable=False, default=GRAPH_VERSION)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)

    steps = relationship(
        "AgentStep",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="AgentStep.sequence",
    )


class AgentStep(Base):
    __tablename__ = "agent_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id = Column(
        Uuid, ForeignKey("agent_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sequence = Column(Integer, nullable=False)
    node = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False)
    input_snapshot = Column(JSONType, nullable=True)
    output_snapshot = Column(JSONType, nullable=True)
    latency_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    run = relationship("AgentRun", back_populates="steps")
