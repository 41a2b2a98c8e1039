"""
Persistence gateway for the inbound pipeline.

Three operations: upsert the sender identity, get or create its
conversation, and insert the inbound message idempotently. Failures leave
this module as PipelineError tagged with the kind decided here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from app.core.errors import ErrorKind, PipelineError, to_pipeline_error
from app.core.session_key import build_session_key, normalize_phone
from app.schemas.conversa import Channel, NormalizedMessage
from app.schemas.session import MessageCreate
from app.services.session_message_service import SessionMessageService
from app.services.session_service import SessionService
from app.services.user_service import UserService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertResult:
    inserted: bool
    message_id: Optional[UUID] = None


class PersistenceGateway:
    def __init__(self, db: DBSession) -> None:
        self.db = db
        self.users = UserService(db)
        self.sessions = SessionService(db)
        self.messages = SessionMessageService(db)

    def upsert_identity(self, sender: str, display_name: Optional[str] = None) -> UUID:
        try:
            user = self.users.upsert_by_phone(normalize_phone(sender), display_name)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise to_pipeline_error(e, "upsert_identity") from e
        return user.id

    def get_or_create_conversation(self, user_id: UUID, hint: Optional[str] = None) -> UUID:
        try:
            user = self.users.get_user(user_id)
            if user is None:
                raise PipelineError(ErrorKind.PERMANENT, f"unknown user {user_id}")
            session, created = self.sessions.get_or_create_by_key(
                build_session_key(user.phone_number),
                {
                    "channel": Channel.WHATSAPP.value,
                    "chat_id": user.phone_number,
                    "user_id": user.id,
                    "display_name": user.display_name,
                    "origin": {"from": user.phone_number, "context_id": hint},
                },
            )
            if not created:
                self.sessions.touch(session)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise to_pipeline_error(e, "get_or_create_conversation") from e
        return session.id

    def insert_message(self, conversation_id: UUID, message: NormalizedMessage) -> InsertResult:
        """Insert the inbound message; a repeated external id reports inserted=False."""
        data = MessageCreate(
            direction="inbound",
            message_type=message.kind,
            content=message.text_content,
            media_ref=message.media_ref,
            provider_message_id=message.external_message_id or None,
            reply_to=message.conversation_hint,
            metadata={"received_at_millis": message.received_at_millis},
        )
        try:
            row = self.messages.create_message(conversation_id, data)
        except SQLAlchemyError as e:
            self.db.rollback()
            error = to_pipeline_error(e, "insert_message")
            if error.kind == ErrorKind.DUPLICATE:
                logger.info(
                    "Duplicate inbound message %s ignored",
                    message.external_message_id,
                    extra={"conversation_id": str(conversation_id)},
                )
                return InsertResult(inserted=False)
            raise error from e
        return InsertResult(inserted=True, message_id=row.id)
