"""Tests for ProcessInboundMessageCommand."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.commands.process_inbound_message_command import (
    OUTCOME_DIRECT_RESPONSE,
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_HANDED_TO_WORKER,
    OUTCOME_ONBOARDING_BLOCKED,
    OUTCOME_PERSIST_FAILED,
    OUTCOME_PROCESSED,
    ProcessInboundMessageCommand,
)
from app.config import Settings
from app.constants.notices import UserNotices
from app.core.normalizer import normalize
from app.models.agent_event import EVENT_STATUS_PENDING, AgentEvent
from app.models.messaging_window import MessagingWindow
from app.models.session_message import SessionMessage
from app.services.agent_event_ledger import AgentEventLedger
from app.services.messaging_window_service import MessagingWindowService
from app.services.session_message_service import SessionMessageService
from tests.fixtures.whatsapp_fixtures import whatsapp_message


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.handle = AsyncMock()
    return mock


@pytest.fixture
def build_command(messenger, orchestrator, session_factory):
    def _build(**settings_overrides):
        return ProcessInboundMessageCommand(
            messenger=messenger,
            orchestrator_factory=lambda: orchestrator,
            session_factory=session_factory,
            settings=Settings(ENV="test", **settings_overrides),
        )

    return _build


@pytest.mark.asyncio
async def test_text_message_is_persisted_and_orchestrated(
    db: Session, build_command, orchestrator, text_message
):
    outcome = await build_command().execute(text_message, "req-1")
    assert outcome == OUTCOME_PROCESSED

    rows = db.query(SessionMessage).all()
    assert len(rows) == 1
    assert rows[0].provider_message_id == text_message.external_message_id

    orchestrator.handle.assert_awaited_once()
    message, context = orchestrator.handle.await_args.args
    assert message.text_content == text_message.text_content
    assert context.request_id == "req-1"
    assert context.conversation_id == rows[0].session_id

    window = db.query(MessagingWindow).one()
    assert window.user_id == context.user_id
    assert window.last_user_message_id == text_message.external_message_id
    assert db.query(AgentEvent).count() == 0


@pytest.mark.asyncio
async def test_redelivered_message_is_processed_once(build_command, orchestrator, text_message):
    command = build_command()
    assert await command.execute(text_message, "req-1") == OUTCOME_PROCESSED
    assert await command.execute(text_message, "req-2") == OUTCOME_DUPLICATE
    orchestrator.handle.assert_awaited_once()


@pytest.mark.asyncio
async def test_persist_failure_notifies_user(messenger, orchestrator, text_message):
    command = ProcessInboundMessageCommand(
        messenger=messenger,
        orchestrator_factory=lambda: orchestrator,
        session_factory=MagicMock(side_effect=RuntimeError("db unavailable")),
        settings=Settings(ENV="test"),
    )
    assert await command.execute(text_message, "req-1") == OUTCOME_PERSIST_FAILED
    messenger.send_text.assert_awaited_once_with(
        text_message.sender, UserNotices.PERSIST_FAILED
    )
    messenger.send_warning_reaction.assert_awaited_once_with(
        text_message.sender, text_message.external_message_id
    )
    orchestrator.handle.assert_not_awaited()


@pytest.mark.asyncio
async def test_orchestration_failure_notifies_user(
    build_command, messenger, orchestrator, text_message
):
    orchestrator.handle.side_effect = RuntimeError("model down")
    assert await build_command().execute(text_message, "req-1") == OUTCOME_FAILED
    messenger.send_text.assert_awaited_once_with(
        text_message.sender, UserNotices.PROCESSING_FAILED
    )
    messenger.send_warning_reaction.assert_awaited_once()


@pytest.mark.asyncio
async def test_direct_action_response_skips_orchestration(
    db: Session, build_command, messenger, orchestrator, sender_phone
):
    message = normalize(
        whatsapp_message(
            sender=sender_phone,
            message_id="wamid.BTN1",
            kind="interactive",
            interactive={
                "type": "button_reply",
                "button_reply": {"id": "action:schedule_confirm", "title": "Confirmar"},
            },
        )
    )
    assert await build_command().execute(message, "req-1") == OUTCOME_DIRECT_RESPONSE
    messenger.send_text.assert_awaited_once_with(
        sender_phone, "¡Perfecto! La cita queda confirmada."
    )
    orchestrator.handle.assert_not_awaited()

    outbound = db.query(SessionMessage).filter(SessionMessage.direction == "outbound").one()
    assert outbound.reply_to == "wamid.BTN1"


@pytest.mark.asyncio
async def test_interactive_reply_is_resolved_before_orchestration(
    build_command, orchestrator, sender_phone
):
    message = normalize(
        whatsapp_message(
            sender=sender_phone,
            kind="interactive",
            interactive={
                "type": "list_reply",
                "list_reply": {"id": "action:reminder_view", "title": "Ver"},
            },
        )
    )
    assert await build_command().execute(message, "req-1") == OUTCOME_PROCESSED
    resolved = orchestrator.handle.await_args.args[0]
    assert resolved.kind == "text"
    assert resolved.text_content == "Muéstrame mis recordatorios."


@pytest.mark.asyncio
async def test_onboarding_gate_blocks_first_contact(
    build_command, messenger, orchestrator, text_message
):
    command = build_command(onboarding_enabled="true")
    assert await command.execute(text_message, "req-1") == OUTCOME_ONBOARDING_BLOCKED
    messenger.send_text.assert_awaited_once_with(text_message.sender, UserNotices.SIGNUP_PROMPT)
    orchestrator.handle.assert_not_awaited()


@pytest.mark.asyncio
async def test_shadow_ledger_enqueues_and_answers_inline(
    db: Session, build_command, orchestrator, text_message
):
    command = build_command(agent_event_ledger_enabled="true", agent_event_ledger_mode="shadow")
    assert await command.execute(text_message, "req-1") == OUTCOME_PROCESSED
    event = db.query(AgentEvent).one()
    assert event.status == EVENT_STATUS_PENDING
    assert event.idempotency_key == text_message.external_message_id
    orchestrator.handle.assert_awaited_once()


@pytest.mark.asyncio
async def test_worker_ledger_hands_off_resolved_message(
    db: Session, build_command, orchestrator, sender_phone
):
    message = normalize(
        whatsapp_message(
            sender=sender_phone,
            kind="interactive",
            interactive={
                "type": "button_reply",
                "button_reply": {"id": "action:schedule_cancel", "title": "Cancelar"},
            },
        )
    )
    command = build_command(agent_event_ledger_enabled="true", agent_event_ledger_mode="worker")
    assert await command.execute(message, "req-1") == OUTCOME_HANDED_TO_WORKER
    orchestrator.handle.assert_not_awaited()

    event = db.query(AgentEvent).one()
    assert event.input_type == "text"
    assert event.payload["text_content"] == "Cancela la cita, por favor."


@pytest.mark.asyncio
async def test_transient_persist_error_is_retried_once(
    db: Session, build_command, orchestrator, text_message
):
    original_create = SessionMessageService.create_message
    calls = []

    def flaky_create(self, session_id, data):
        calls.append(session_id)
        if len(calls) == 1:
            raise OperationalError("INSERT INTO session_messages", {}, Exception("connection reset"))
        return original_create(self, session_id, data)

    with patch.object(SessionMessageService, "create_message", flaky_create), patch(
        "app.core.errors.asyncio.sleep", new=AsyncMock()
    ) as sleep:
        outcome = await build_command().execute(text_message, "req-1")

    assert outcome == OUTCOME_PROCESSED
    assert len(calls) == 2
    sleep.assert_awaited_once()
    assert db.query(SessionMessage).count() == 1
    orchestrator.handle.assert_awaited_once()


@pytest.mark.asyncio
async def test_messaging_window_failure_still_orchestrates(
    db: Session, build_command, orchestrator, text_message
):
    with patch.object(
        MessagingWindowService, "record_inbound", side_effect=RuntimeError("window table locked")
    ):
        outcome = await build_command().execute(text_message, "req-1")

    assert outcome == OUTCOME_PROCESSED
    orchestrator.handle.assert_awaited_once()
    assert db.query(MessagingWindow).count() == 0


@pytest.mark.asyncio
async def test_shadow_enqueue_failure_is_not_fatal(
    db: Session, build_command, orchestrator, text_message
):
    command = build_command(agent_event_ledger_enabled="true", agent_event_ledger_mode="shadow")
    with patch.object(AgentEventLedger, "enqueue", side_effect=RuntimeError("ledger down")):
        outcome = await command.execute(text_message, "req-1")

    assert outcome == OUTCOME_PROCESSED
    orchestrator.handle.assert_awaited_once()
    assert db.query(AgentEvent).count() == 0
    assert db.query(MessagingWindow).count() == 1


@pytest.mark.asyncio
async def test_direct_action_send_failure_is_contained(
    db: Session, build_command, messenger, orchestrator, sender_phone
):
    messenger.send_text.side_effect = RuntimeError("graph api down")
    message = normalize(
        whatsapp_message(
            sender=sender_phone,
            message_id="wamid.BTN2",
            kind="interactive",
            interactive={
                "type": "button_reply",
                "button_reply": {"id": "action:schedule_confirm", "title": "Confirmar"},
            },
        )
    )
    assert await build_command().execute(message, "req-1") == OUTCOME_DIRECT_RESPONSE
    orchestrator.handle.assert_not_awaited()
    assert db.query(SessionMessage).filter(SessionMessage.direction == "outbound").count() == 0
