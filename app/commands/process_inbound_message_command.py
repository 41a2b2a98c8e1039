"""
Background processing of one accepted inbound WhatsApp message.

Runs after the webhook has answered. Every step is best-effort and logged on
its own; a failing side record never keeps the user from getting an answer.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.commands.base_whatsapp import BaseWhatsAppCommand
from app.commands.orchestrate_input_command import InputOrchestrator, build_default_orchestrator
from app.config import Settings, get_settings
from app.constants.notices import UserNotices
from app.core.errors import retry_with_backoff
from app.core.interactive import resolve_interactive
from app.core.runtime import Messenger, TurnContext
from app.schemas.conversa import NormalizedMessage
from app.services.agent_event_ledger import AgentEventLedger, EnqueueAgentEvent
from app.services.messaging_window_service import MessagingWindowService
from app.services.onboarding_service import OnboardingService
from app.services.persistence_gateway import InsertResult, PersistenceGateway
from app.services.session_manager import SessionManager
from app.services.user_service import UserService
from app.utils.db.db_session_helper import db_session
from app.utils.flags import (
    LEDGER_MODE_WORKER,
    agent_event_ledger_mode,
    is_agent_event_ledger_enabled,
)

SessionFactory = Callable[[], AbstractContextManager[DBSession]]

OUTCOME_PERSIST_FAILED = "persist_failed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_DIRECT_RESPONSE = "direct_response"
OUTCOME_ONBOARDING_BLOCKED = "onboarding_blocked"
OUTCOME_HANDED_TO_WORKER = "handed_to_worker"
OUTCOME_PROCESSED = "processed"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class PersistedTurn:
    user_id: UUID
    conversation_id: UUID
    insert: InsertResult


class ProcessInboundMessageCommand(BaseWhatsAppCommand):
    """
    Persist, record and answer one inbound message.

    With the agent event ledger in ``shadow`` mode the message is also enqueued
    right after persistence and answered inline. In ``worker`` mode the
    (resolved) message is enqueued where inline orchestration would run and
    the ledger drain answers it.
    """

    def __init__(
        self,
        messenger: Optional[Messenger] = None,
        orchestrator_factory: Optional[Callable[[], InputOrchestrator]] = None,
        session_factory: SessionFactory = db_session,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.messenger = messenger or self.get_whatsapp_adapter()
        self.orchestrator_factory = orchestrator_factory or (
            lambda: build_default_orchestrator(self.messenger, settings=self.settings)
        )
        self.session_factory = session_factory
        self.logger = logging.getLogger(__name__)

    async def execute(self, message: NormalizedMessage, request_id: str) -> str:
        """
        Run the background pipeline for ``message``.

        Args:
            message: Normalized inbound message accepted by the webhook.
            request_id: Correlation id of the webhook request.

        Returns:
            str: Outcome name (``processed``, ``duplicate``, ``persist_failed``, ...).
        """
        log_extra = {"request_id": request_id, "message_id": message.external_message_id}

        try:
            persisted = await retry_with_backoff(
                lambda: self._persist(message), max_retries=1, operation="persist_inbound"
            )
        except Exception as e:
            self.logger.error("Failed to persist inbound message: %s", e, extra=log_extra)
            await self._notify_failure(message, UserNotices.PERSIST_FAILED, log_extra)
            return OUTCOME_PERSIST_FAILED

        if not persisted.insert.inserted:
            self.logger.info("Duplicate inbound message, stopping", extra=log_extra)
            return OUTCOME_DUPLICATE

        context = TurnContext(
            request_id=request_id,
            user_id=persisted.user_id,
            conversation_id=persisted.conversation_id,
        )
        log_extra = context.log_extra()
        ledger_enabled = is_agent_event_ledger_enabled(self.settings)
        worker_mode = ledger_enabled and agent_event_ledger_mode(self.settings) == LEDGER_MODE_WORKER

        if ledger_enabled and not worker_mode:
            self._enqueue(message, context)

        self._record_window(message, context)

        resolution = resolve_interactive(message)
        if resolution.direct_response:
            await self._send_direct_response(message, resolution.direct_response, context)
            return OUTCOME_DIRECT_RESPONSE
        message = resolution.message

        if await self._onboarding_blocks(message, context):
            return OUTCOME_ONBOARDING_BLOCKED

        if worker_mode and self._enqueue(message, context):
            return OUTCOME_HANDED_TO_WORKER

        try:
            await self.orchestrator_factory().handle(message, context)
        except Exception as e:
            self.logger.exception("Orchestration failed: %s", e, extra=log_extra)
            await self._notify_failure(message, UserNotices.PROCESSING_FAILED, log_extra)
            return OUTCOME_FAILED
        return OUTCOME_PROCESSED

    async def _persist(self, message: NormalizedMessage) -> PersistedTurn:
        with self.session_factory() as db:
            gateway = PersistenceGateway(db)
            user_id = gateway.upsert_identity(message.sender, message.sender_name)
            conversation_id = gateway.get_or_create_conversation(
                user_id, message.conversation_hint
            )
            insert = gateway.insert_message(conversation_id, message)
        return PersistedTurn(user_id, conversation_id, insert)

    def _enqueue(self, message: NormalizedMessage, context: TurnContext) -> bool:
        """True when a new event row was written."""
        try:
            with self.session_factory() as db:
                event_id = AgentEventLedger(
                    db, max_attempts=self.settings.agent_event_max_attempts
                ).enqueue(
                    EnqueueAgentEvent(
                        request_id=context.request_id,
                        user_id=context.user_id,
                        conversation_id=context.conversation_id,
                        message=message,
                    )
                )
        except Exception as e:
            self.logger.error("Failed to enqueue agent event: %s", e, extra=context.log_extra())
            return False
        return event_id is not None

    def _record_window(self, message: NormalizedMessage, context: TurnContext) -> None:
        try:
            with self.session_factory() as db:
                MessagingWindowService(db).record_inbound(
                    context.user_id, message.sender, message.external_message_id or None
                )
        except Exception as e:
            self.logger.error(
                "Failed to update messaging window: %s", e, extra=context.log_extra()
            )

    async def _send_direct_response(
        self, message: NormalizedMessage, text: str, context: TurnContext
    ) -> None:
        try:
            sent_id = await self.messenger.send_text(message.sender, text)
        except Exception as e:
            self.logger.error(
                "Failed to send direct action response: %s", e, extra=context.log_extra()
            )
            return
        if sent_id is None:
            self.logger.warning("Direct action response not delivered", extra=context.log_extra())
            return
        try:
            with self.session_factory() as db:
                SessionManager(db).record_outbound(
                    context.conversation_id,
                    text,
                    provider_message_id=sent_id or None,
                    reply_to=message.external_message_id or None,
                )
        except Exception as e:
            self.logger.error(
                "Failed to record direct action response: %s", e, extra=context.log_extra()
            )

    async def _onboarding_blocks(self, message: NormalizedMessage, context: TurnContext) -> bool:
        try:
            with self.session_factory() as db:
                user = UserService(db).get_user(context.user_id)
                if user is None:
                    return False
                gate = await OnboardingService(
                    db, self.messenger, self.settings
                ).ensure_signup_on_first_contact(user, message.text_content)
        except Exception as e:
            self.logger.error("Onboarding gate failed: %s", e, extra=context.log_extra())
            return False
        if gate.blocked:
            self.logger.info(
                "Turn stopped by onboarding gate (%s)", gate.reason, extra=context.log_extra()
            )
        return gate.blocked

    async def _notify_failure(self, message: NormalizedMessage, text: str, log_extra: dict) -> None:
        try:
            await self.messenger.send_text(message.sender, text)
            if message.external_message_id:
                await self.messenger.send_warning_reaction(
                    message.sender, message.external_message_id
                )
        except Exception as e:
            self.logger.error("Failed to notify user of failure: %s", e, extra=log_extra)
