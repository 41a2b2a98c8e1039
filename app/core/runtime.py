from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol
from uuid import UUID

from app.schemas.conversa import NormalizedMessage


@dataclass(frozen=True)
class TurnContext:
    """Identifiers of the turn being processed; carried into handler logs."""

    request_id: str
    user_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    tool_intent: bool = False

    def log_extra(self) -> dict[str, Optional[str]]:
        return {
            "request_id": self.request_id,
            "user_id": str(self.user_id) if self.user_id else None,
            "conversation_id": str(self.conversation_id) if self.conversation_id else None,
        }


class Messenger(Protocol):
    async def send_text(self, recipient: str, body: str) -> Optional[str]: ...

    async def send_warning_reaction(self, recipient: str, message_id: str) -> bool: ...


PathwayHandler = Callable[[NormalizedMessage, TurnContext], Awaitable[None]]


@dataclass
class PathwayHandlers:
    text: PathwayHandler
    tool_intent: PathwayHandler
    media: PathwayHandler
