"""SessionManager: facade for conversation history and outbound turn recording."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session as DBSession

from app.models.session_message import SessionMessage
from app.schemas.session import MessageCreate
from app.services.session_message_service import SessionMessageService
from app.services.session_service import SessionService
from uuid import UUID


class SessionManager:
    def __init__(self, db: DBSession) -> None:
        self._db = db
        self._session_svc = SessionService(db)
        self._message_svc = SessionMessageService(db)

    def get_history_for_llm(
        self,
        session_id: UUID,
        limit: int = 20,
        exclude_provider_message_id: Optional[str] = None,
    ) -> List[dict[str, str]]:
        """Recent turns as [{role, content}], oldest first.

        The message currently being answered is usually already persisted;
        pass its id to keep it out of the history.
        """
        messages = self._message_svc.get_recent_messages(session_id, limit=limit)
        result: List[dict[str, str]] = []
        for m in messages:
            if (
                exclude_provider_message_id
                and m.provider_message_id == exclude_provider_message_id
            ):
                continue
            role = "user" if m.direction == "inbound" else "assistant"
            content = (m.content or "").strip()
            if content:
                result.append({"role": role, "content": content})
        return result

    def record_outbound(
        self,
        session_id: UUID,
        text: str,
        provider_message_id: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> SessionMessage:
        message = self._message_svc.create_message(
            session_id,
            MessageCreate(
                direction="outbound",
                content=text,
                provider_message_id=provider_message_id,
                reply_to=reply_to,
            ),
        )
        session = self._session_svc.get_session(session_id)
        if session is not None:
            self._session_svc.touch(session)
        return message
