"""Tests for AssistantReplyService and MediaInputService."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic_ai.messages import BinaryContent
from sqlalchemy.orm import Session

from app.core.runtime import TurnContext
from app.models.session_message import SessionMessage
from app.services.assistant_reply_service import AssistantReplyService
from app.services.media_input_service import DEFAULT_INSTRUCTIONS, MediaInputService
from app.services.persistence_gateway import PersistenceGateway


@pytest.fixture
def llm():
    mock = MagicMock()
    mock.run = AsyncMock(return_value="¡Hola! ¿En qué te ayudo?")
    return mock


@pytest.fixture
def turn(db, setup_conversation, text_message):
    user, conversation_id = setup_conversation
    PersistenceGateway(db).insert_message(conversation_id, text_message)
    return TurnContext(request_id="req-1", user_id=user.id, conversation_id=conversation_id)


@pytest.mark.asyncio
async def test_reply_sends_and_records_outbound(
    db: Session, messenger, llm, session_factory, text_message, turn
):
    service = AssistantReplyService(messenger, llm, session_factory=session_factory)
    sent_id = await service.reply(text_message, turn, text_message.text_content)

    assert sent_id.startswith("wamid.out.")
    messenger.send_text.assert_awaited_once_with(
        text_message.sender, "¡Hola! ¿En qué te ayudo?"
    )
    # the message being answered is not part of its own history
    assert llm.run.await_args.kwargs["history"] == []
    assert llm.run.await_args.kwargs["conversation_id"] == str(turn.conversation_id)

    outbound = db.query(SessionMessage).filter(SessionMessage.direction == "outbound").one()
    assert outbound.content == "¡Hola! ¿En qué te ayudo?"
    assert outbound.provider_message_id == sent_id
    assert outbound.reply_to == text_message.external_message_id


@pytest.mark.asyncio
async def test_history_includes_previous_turns(
    messenger, llm, session_factory, text_message, turn
):
    service = AssistantReplyService(messenger, llm, session_factory=session_factory)
    await service.handle_text(text_message, turn)

    follow_up = text_message.model_copy(
        update={"external_message_id": "wamid.NEXT", "text_content": "gracias"}
    )
    await service.handle_text(follow_up, turn)
    assert llm.run.await_args.kwargs["history"] == [
        {"role": "user", "content": text_message.text_content},
        {"role": "assistant", "content": "¡Hola! ¿En qué te ayudo?"},
    ]


@pytest.mark.asyncio
async def test_tool_intent_flag_reaches_the_model(messenger, llm, session_factory, text_message, turn):
    service = AssistantReplyService(messenger, llm, session_factory=session_factory)
    context = TurnContext(
        request_id="req-1",
        user_id=turn.user_id,
        conversation_id=turn.conversation_id,
        tool_intent=True,
    )
    await service.handle_tool_intent(text_message, context)
    assert llm.run.await_args.kwargs["tool_intent"] is True


@pytest.mark.asyncio
async def test_empty_model_output_sends_nothing(messenger, llm, session_factory, text_message, turn):
    llm.run.return_value = "   "
    service = AssistantReplyService(messenger, llm, session_factory=session_factory)
    assert await service.reply(text_message, turn, "hola") is None
    messenger.send_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_undelivered_reply_raises(messenger, llm, session_factory, text_message, turn):
    messenger.send_text.side_effect = None
    messenger.send_text.return_value = None
    service = AssistantReplyService(messenger, llm, session_factory=session_factory)
    with pytest.raises(RuntimeError):
        await service.reply(text_message, turn, "hola")


@pytest.mark.asyncio
async def test_media_input_downloads_and_prompts_with_content(image_message):
    media = MagicMock()
    media.download_media = AsyncMock(return_value=(b"jpeg-bytes", "image/png"))
    replies = MagicMock()
    replies.reply = AsyncMock()
    context = TurnContext(request_id="req-1")

    await MediaInputService(media, replies).handle(image_message, context)

    media.download_media.assert_awaited_once_with("MEDIA_1")
    message, passed_context, prompt = replies.reply.await_args.args
    assert message is image_message
    assert prompt[0] == "mi factura"
    assert isinstance(prompt[1], BinaryContent)
    assert prompt[1].data == b"jpeg-bytes"
    # the mime type from the webhook wins over the download response
    assert prompt[1].media_type == "image/jpeg"


@pytest.mark.asyncio
async def test_media_input_default_instruction(image_message):
    media = MagicMock()
    media.download_media = AsyncMock(return_value=(b"ogg", "audio/ogg"))
    replies = MagicMock()
    replies.reply = AsyncMock()
    audio = image_message.model_copy(
        update={"kind": "audio", "text_content": None, "media_mime_type": None}
    )

    await MediaInputService(media, replies).handle(audio, TurnContext(request_id="req-1"))
    prompt = replies.reply.await_args.args[2]
    assert prompt[0] == DEFAULT_INSTRUCTIONS["audio"]
    assert prompt[1].media_type == "audio/ogg"


@pytest.mark.asyncio
async def test_media_input_requires_reference(image_message):
    message = image_message.model_copy(update={"media_ref": None})
    with pytest.raises(ValueError):
        await MediaInputService(MagicMock(), MagicMock()).handle(
            message, TurnContext(request_id="req-1")
        )
