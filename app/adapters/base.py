"""
Platform adapter interface.

Adapters encapsulate provider-specific wire details (webhook parsing,
outbound sends, media retrieval) and expose ``NormalizedMessage`` to the core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from app.schemas.conversa import NormalizedMessage


class BasePlatformAdapter(ABC):
    """Contract for platform adapters. New platforms implement this interface."""

    @abstractmethod
    def parse_webhook(self, raw_payload: dict[str, Any]) -> NormalizedMessage:
        """Parse one raw provider message into a normalized inbound message."""
        ...

    @abstractmethod
    async def send_text(self, recipient: str, body: str) -> Optional[str]:
        """Send a text message. Return the provider message id, or None on failure."""
        ...

    async def send_warning_reaction(self, recipient: str, message_id: str) -> bool:
        """Mark an inbound message as not processed. Platforms without reactions no-op."""
        return False

    def verify_webhook(self, raw_body: bytes, request_headers: Mapping[str, str]) -> bool:
        """
        Verify webhook request authenticity. Override if the platform signs requests.
        Return True if valid or verification not required; False to reject.
        """
        return True
