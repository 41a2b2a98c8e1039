"""AssistantReplyService: answer text turns with the LLM and record the reply."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Callable, List, Optional, Sequence, Union

from pydantic_ai.messages import UserContent
from sqlalchemy.orm import Session as DBSession

from app.core.runtime import Messenger, TurnContext
from app.schemas.conversa import NormalizedMessage
from app.services.session_manager import SessionManager
from app.utils.db.db_session_helper import db_session
from app.workers.llm import LLMRunner

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[DBSession]]


class AssistantReplyService:
    def __init__(
        self,
        messenger: Messenger,
        llm: LLMRunner,
        session_factory: SessionFactory = db_session,
        history_limit: int = 20,
    ) -> None:
        self.messenger = messenger
        self.llm = llm
        self.session_factory = session_factory
        self.history_limit = history_limit

    def load_history(
        self, message: NormalizedMessage, context: TurnContext
    ) -> List[dict[str, str]]:
        if context.conversation_id is None:
            return []
        with self.session_factory() as db:
            return SessionManager(db).get_history_for_llm(
                context.conversation_id,
                limit=self.history_limit,
                exclude_provider_message_id=message.external_message_id or None,
            )

    async def reply(
        self,
        message: NormalizedMessage,
        context: TurnContext,
        prompt: Union[str, Sequence[UserContent]],
    ) -> Optional[str]:
        """Run the model and send its answer. Returns the outbound message id."""
        history = self.load_history(message, context)
        text = await self.llm.run(
            prompt,
            history=history,
            tool_intent=context.tool_intent,
            conversation_id=str(context.conversation_id) if context.conversation_id else None,
            user_id=str(context.user_id) if context.user_id else None,
        )
        text = (text or "").strip()
        if not text:
            logger.warning("Model returned an empty reply", extra=context.log_extra())
            return None
        sent_id = await self.messenger.send_text(message.sender, text)
        if sent_id is None:
            raise RuntimeError("Outbound reply could not be delivered")
        if context.conversation_id is not None:
            with self.session_factory() as db:
                SessionManager(db).record_outbound(
                    context.conversation_id,
                    text,
                    provider_message_id=sent_id or None,
                    reply_to=message.external_message_id or None,
                )
        return sent_id

    async def handle_text(self, message: NormalizedMessage, context: TurnContext) -> None:
        await self.reply(message, context, message.text_content or "")

    async def handle_tool_intent(self, message: NormalizedMessage, context: TurnContext) -> None:
        await self.reply(message, context, message.text_content or "")
