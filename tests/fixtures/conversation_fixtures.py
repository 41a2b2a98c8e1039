"""Fixtures for users, conversations and messengers."""

from unittest.mock import AsyncMock

import pytest

from app.services.persistence_gateway import PersistenceGateway
from app.services.user_service import UserService


@pytest.fixture(scope="function")
def setup_user(db, sender_phone, faker):
    """A WhatsApp user created through the persistence gateway."""
    user_id = PersistenceGateway(db).upsert_identity(sender_phone, faker.first_name())
    return UserService(db).get_user(user_id)


@pytest.fixture(scope="function")
def setup_conversation(db, setup_user):
    """(user, conversation_id) for ``setup_user``."""
    conversation_id = PersistenceGateway(db).get_or_create_conversation(setup_user.id)
    return setup_user, conversation_id


@pytest.fixture
def messenger(faker):
    """Outbound messenger double; send_text returns a fresh provider id."""
    mock = AsyncMock()
    mock.send_text.side_effect = lambda recipient, body: f"wamid.out.{faker.uuid4()}"
    mock.send_warning_reaction.return_value = True
    return mock
