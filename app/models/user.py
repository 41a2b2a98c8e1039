"""User model: one row per WhatsApp identity (phone number)."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from app.db import Base
from app.models.mixins import TimestampMixin


class User(Base, TimestampMixin):
    """WhatsApp sender identity plus first-contact onboarding state."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(32), unique=True, nullable=False, index=True)
    display_name = Column(String(256), nullable=True)
    email = Column(String(320), nullable=True)
    onboarding_started_at = Column(DateTime(timezone=True), nullable=True)
    onboarding_completed_at = Column(DateTime(timezone=True), nullable=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
