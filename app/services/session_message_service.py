"""SessionMessage CRUD and history reads."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session as DBSession

from app.models.session import Session
from app.models.session_message import SessionMessage
from app.schemas.session import MessageCreate
from uuid import UUID


class SessionMessageService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def create_message(self, session_id: UUID, data: MessageCreate) -> SessionMessage:
        """Insert and commit. Raises IntegrityError on a repeated provider_message_id."""
        dump = data.model_dump()
        extra = dump.pop("metadata", None)
        msg = SessionMessage(
            session_id=session_id,
            extra=extra,
            **dump,
        )
        self.db.add(msg)
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def get_by_provider_message_id(self, provider_message_id: str) -> Optional[SessionMessage]:
        return (
            self.db.query(SessionMessage)
            .filter(SessionMessage.provider_message_id == provider_message_id)
            .first()
        )

    def get_recent_messages(self, session_id: UUID, limit: int = 20) -> List[SessionMessage]:
        """Last ``limit`` messages, oldest first."""
        rows = (
            self.db.query(SessionMessage)
            .filter(SessionMessage.session_id == session_id)
            .order_by(SessionMessage.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def get_message_count(self, session_id: UUID) -> int:
        return (
            self.db.query(SessionMessage)
            .filter(SessionMessage.session_id == session_id)
            .count()
        )

    def count_outbound_for_user(self, user_id: UUID) -> int:
        """Outbound messages across all of a user's sessions."""
        return (
            self.db.query(SessionMessage)
            .join(Session, Session.id == SessionMessage.session_id)
            .filter(Session.user_id == user_id, SessionMessage.direction == "outbound")
            .count()
        )
