"""Tests for PersistenceGateway."""

import pytest
from sqlalchemy.orm import Session

from app.core.errors import ErrorKind, PipelineError
from app.core.normalizer import normalize
from app.models.session_message import SessionMessage
from app.services.persistence_gateway import PersistenceGateway
from app.services.session_service import SessionService
from tests.fixtures.whatsapp_fixtures import whatsapp_message


def test_upsert_identity_is_stable_per_phone(db: Session):
    gateway = PersistenceGateway(db)
    first = gateway.upsert_identity("+57 300 111 2233", "Ana")
    second = gateway.upsert_identity("573001112233")
    assert first == second

    user = gateway.users.get_user(first)
    assert user.phone_number == "573001112233"
    assert user.display_name == "Ana"
    assert user.last_seen_at is not None


def test_upsert_identity_fills_missing_display_name(db: Session):
    gateway = PersistenceGateway(db)
    user_id = gateway.upsert_identity("573001112233")
    gateway.upsert_identity("573001112233", "Luis")
    assert gateway.users.get_user(user_id).display_name == "Luis"


def test_get_or_create_conversation_reuses_session(db: Session, setup_user):
    gateway = PersistenceGateway(db)
    first = gateway.get_or_create_conversation(setup_user.id)
    second = gateway.get_or_create_conversation(setup_user.id, hint="wamid.PREV")
    assert first == second

    session = SessionService(db).get_session(first)
    assert session.session_key == f"whatsapp:{setup_user.phone_number}"
    assert session.user_id == setup_user.id


def test_get_or_create_conversation_unknown_user(db: Session, faker):
    with pytest.raises(PipelineError) as exc_info:
        PersistenceGateway(db).get_or_create_conversation(faker.uuid4(cast_to=None))
    assert exc_info.value.kind == ErrorKind.PERMANENT


def test_insert_message_is_idempotent(db: Session, setup_conversation, text_message):
    _, conversation_id = setup_conversation
    gateway = PersistenceGateway(db)

    first = gateway.insert_message(conversation_id, text_message)
    assert first.inserted is True
    assert first.message_id is not None

    second = gateway.insert_message(conversation_id, text_message)
    assert second.inserted is False
    assert second.message_id is None

    rows = db.query(SessionMessage).filter(SessionMessage.session_id == conversation_id).all()
    assert len(rows) == 1
    assert rows[0].direction == "inbound"
    assert rows[0].content == "hola, ¿cómo estás?"
    assert rows[0].provider_message_id == text_message.external_message_id


def test_insert_message_stores_media_reference(db: Session, setup_conversation, image_message):
    _, conversation_id = setup_conversation
    result = PersistenceGateway(db).insert_message(conversation_id, image_message)
    row = db.get(SessionMessage, result.message_id)
    assert row.message_type == "image"
    assert row.media_ref == "MEDIA_1"
    assert row.content == "mi factura"
    assert row.message_metadata == {"received_at_millis": image_message.received_at_millis}


def test_messages_without_provider_id_are_not_deduplicated(db: Session, setup_conversation):
    _, conversation_id = setup_conversation
    message = normalize(whatsapp_message(message_id=""))
    gateway = PersistenceGateway(db)
    assert gateway.insert_message(conversation_id, message).inserted is True
    assert gateway.insert_message(conversation_id, message).inserted is True
