"""MediaInputService: fetch WhatsApp media and let the model answer about it."""

from __future__ import annotations

import logging
from typing import Protocol, Tuple

from pydantic_ai.messages import BinaryContent

from app.core.runtime import TurnContext
from app.schemas.conversa import MessageKind, NormalizedMessage
from app.services.assistant_reply_service import AssistantReplyService

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = {
    MessageKind.AUDIO.value: "El usuario envió una nota de voz. Responde a lo que pide.",
    MessageKind.IMAGE.value: "El usuario envió una imagen. Resume lo importante.",
    MessageKind.DOCUMENT.value: "El usuario envió un documento. Resume lo importante.",
}
FALLBACK_INSTRUCTION = "El usuario envió un archivo. Resume lo importante."


class MediaSource(Protocol):
    async def download_media(self, media_id: str) -> Tuple[bytes, str]: ...


class MediaInputService:
    def __init__(self, media: MediaSource, replies: AssistantReplyService) -> None:
        self.media = media
        self.replies = replies

    async def handle(self, message: NormalizedMessage, context: TurnContext) -> None:
        if not message.media_ref:
            raise ValueError("Rich input without a media reference")
        data, mime_type = await self.media.download_media(message.media_ref)
        media_type = message.media_mime_type or mime_type
        logger.info(
            "Media downloaded (%s, %d bytes)",
            media_type,
            len(data),
            extra=context.log_extra(),
        )
        instruction = message.text_content or DEFAULT_INSTRUCTIONS.get(
            message.kind, FALLBACK_INSTRUCTION
        )
        await self.replies.reply(
            message,
            context,
            [instruction, BinaryContent(data=data, media_type=media_type)],
        )
