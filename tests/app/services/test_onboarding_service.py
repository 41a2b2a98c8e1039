"""Tests for the first-contact onboarding gate."""

from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from app.config import Settings
from app.constants.notices import UserNotices
from app.schemas.session import MessageCreate
from app.services.onboarding_service import (
    REASON_ALREADY_COMPLETED,
    REASON_ALREADY_IN_PROGRESS,
    REASON_COMPLETED,
    REASON_DISABLED,
    REASON_FLOW_SEND_FAILED,
    REASON_FLOW_SENT,
    OnboardingService,
    extract_email,
    extract_name,
)
from app.services.session_message_service import SessionMessageService
from app.utils.dates import utcnow


@pytest.fixture
def enabled_settings():
    return Settings(ENV="test", onboarding_enabled="true")


@pytest.mark.asyncio
async def test_disabled_gate_lets_everything_through(db: Session, setup_user, messenger):
    service = OnboardingService(db, messenger, settings=Settings(ENV="test"))
    gate = await service.ensure_signup_on_first_contact(setup_user, "hola")
    assert gate.blocked is False
    assert gate.reason == REASON_DISABLED
    messenger.send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_first_contact_sends_prompt_and_blocks(
    db: Session, setup_user, messenger, enabled_settings
):
    service = OnboardingService(db, messenger, settings=enabled_settings)
    gate = await service.ensure_signup_on_first_contact(setup_user, "hola")
    assert gate.blocked is True
    assert gate.reason == REASON_FLOW_SENT
    messenger.send_text.assert_awaited_once_with(
        setup_user.phone_number, UserNotices.SIGNUP_PROMPT
    )
    db.refresh(setup_user)
    assert setup_user.onboarding_started_at is not None


@pytest.mark.asyncio
async def test_prompt_send_failure_does_not_block(
    db: Session, setup_user, messenger, enabled_settings
):
    messenger.send_text.side_effect = None
    messenger.send_text.return_value = None
    service = OnboardingService(db, messenger, settings=enabled_settings)
    gate = await service.ensure_signup_on_first_contact(setup_user, "hola")
    assert gate.blocked is False
    assert gate.reason == REASON_FLOW_SEND_FAILED
    assert setup_user.onboarding_started_at is None


@pytest.mark.asyncio
async def test_pending_signup_without_email_stays_blocked(
    db: Session, setup_user, messenger, enabled_settings
):
    service = OnboardingService(db, messenger, settings=enabled_settings)
    await service.ensure_signup_on_first_contact(setup_user, "hola")
    messenger.send_text.reset_mock()

    gate = await service.ensure_signup_on_first_contact(setup_user, "¿qué necesitas?")
    assert gate.blocked is True
    assert gate.reason == REASON_ALREADY_IN_PROGRESS
    messenger.send_text.assert_awaited_once_with(
        setup_user.phone_number, UserNotices.SIGNUP_PENDING
    )


@pytest.mark.asyncio
async def test_reply_with_email_completes_signup(
    db: Session, setup_user, messenger, enabled_settings
):
    service = OnboardingService(db, messenger, settings=enabled_settings)
    await service.ensure_signup_on_first_contact(setup_user, "hola")
    messenger.send_text.reset_mock()

    gate = await service.ensure_signup_on_first_contact(
        setup_user, "Me llamo ana pérez, mi email es Ana.Perez@Example.com"
    )
    assert gate.blocked is False
    assert gate.reason == REASON_COMPLETED
    db.refresh(setup_user)
    assert setup_user.email == "ana.perez@example.com"
    assert setup_user.display_name == "Ana Pérez"
    assert setup_user.onboarding_completed_at is not None
    messenger.send_text.assert_awaited_once_with(
        setup_user.phone_number, UserNotices.signup_completed("Ana Pérez")
    )

    again = await service.ensure_signup_on_first_contact(setup_user, "hola")
    assert again.reason == REASON_ALREADY_COMPLETED


@pytest.mark.asyncio
async def test_expired_signup_is_prompted_again(
    db: Session, setup_user, messenger, enabled_settings
):
    setup_user.onboarding_started_at = utcnow() - timedelta(hours=2)
    db.commit()
    service = OnboardingService(db, messenger, settings=enabled_settings)
    gate = await service.ensure_signup_on_first_contact(setup_user, "hola")
    assert gate.reason == REASON_FLOW_SENT
    messenger.send_text.assert_awaited_once_with(
        setup_user.phone_number, UserNotices.SIGNUP_PROMPT
    )


@pytest.mark.asyncio
async def test_existing_conversations_are_not_onboarded(
    db: Session, setup_conversation, messenger, enabled_settings
):
    user, conversation_id = setup_conversation
    SessionMessageService(db).create_message(
        conversation_id, MessageCreate(direction="outbound", content="¡Hola!")
    )
    service = OnboardingService(db, messenger, settings=enabled_settings)
    gate = await service.ensure_signup_on_first_contact(user, "hola")
    assert gate.blocked is False
    assert gate.reason == REASON_ALREADY_COMPLETED
    messenger.send_text.assert_not_awaited()


@pytest.mark.parametrize(
    "text,email,name",
    [
        ("mi email es juan@correo.co", "juan@correo.co", None),
        ("Soy María, maria@x.com", "maria@x.com", "María"),
        ("my name is john smith", None, "John Smith"),
        (None, None, None),
    ],
)
def test_extractors(text, email, name):
    assert extract_email(text) == email
    assert extract_name(text) == name
