"""Session CRUD and get_or_create by key."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.models.session import Session
from app.schemas.session import SessionCreate
from uuid import UUID


class SessionService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_session(self, session_id: UUID) -> Optional[Session]:
        return self.db.query(Session).filter(Session.id == session_id).first()

    def get_session_by_key(self, session_key: str) -> Optional[Session]:
        return self.db.query(Session).filter(Session.session_key == session_key).first()

    def get_or_create_by_key(
        self,
        session_key: str,
        defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Session, bool]:
        """
        Get existing session by key or create one. Returns (session, created).
        When creating, defaults must include at least channel and chat_id.
        A concurrent creator winning the unique key race is resolved by re-reading.
        """
        session = self.get_session_by_key(session_key)
        if session is not None:
            return session, False
        defaults = dict(defaults or {})
        defaults.setdefault("session_key", session_key)
        defaults.setdefault("last_message_at", datetime.now(timezone.utc))
        if "channel" not in defaults or "chat_id" not in defaults:
            raise ValueError(
                "defaults must include 'channel' and 'chat_id' when creating a session"
            )
        try:
            session = self.create_session(SessionCreate(**defaults))
        except IntegrityError:
            self.db.rollback()
            session = self.get_session_by_key(session_key)
            if session is None:
                raise
            return session, False
        return session, True

    def create_session(self, data: SessionCreate) -> Session:
        session = Session(**data.model_dump())
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def touch(self, session: Session) -> Session:
        session.last_message_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(session)
        return session
