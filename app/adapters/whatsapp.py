"""
WhatsApp Cloud API adapter.

Outbound calls go to the Graph API over httpx. Send failures are logged and
reported as ``None``/``False`` so callers in the webhook path never see a
transport exception.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Tuple

import httpx

from app.adapters.base import BasePlatformAdapter
from app.config import Settings, get_settings
from app.core.normalizer import normalize
from app.schemas.conversa import NormalizedMessage, OutboundSendResult
from app.utils.signature import verify_webhook_signature

logger = logging.getLogger(__name__)

WARNING_EMOJI = "⚠️"


class WhatsAppMediaError(Exception):
    """Media metadata or content could not be retrieved."""


class WhatsAppAdapter(BasePlatformAdapter):
    """WhatsApp adapter: parse webhook messages, send texts and reactions, fetch media."""

    def __init__(
        self,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        graph_api_url: str = "https://graph.facebook.com",
        api_version: str = "v21.0",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._base_url = f"{graph_api_url.rstrip('/')}/{api_version}"
        self._timeout = timeout
        self._client = client
        self._settings = settings

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    @property
    def is_configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    def parse_webhook(self, raw_payload: dict[str, Any]) -> NormalizedMessage:
        """Normalize one entry of ``value.messages``."""
        return normalize(raw_payload)

    def verify_webhook(self, raw_body: bytes, request_headers: Mapping[str, str]) -> bool:
        """Validate X-Hub-Signature-256 against the app secret."""
        return verify_webhook_signature(raw_body, request_headers, self._settings)

    async def _post_message(self, payload: dict[str, Any]) -> OutboundSendResult:
        if not self.is_configured:
            logger.warning("WhatsApp send skipped: access token or phone number id not set")
            return OutboundSendResult(success=False)
        url = f"{self._base_url}/{self._phone_number_id}/messages"
        body = {"messaging_product": "whatsapp", **payload}
        try:
            resp = await self._get_client().post(url, json=body, headers=self._headers())
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "WhatsApp send failed: %s",
                e,
                extra={"message_type": payload.get("type"), "recipient": payload.get("to")},
            )
            return OutboundSendResult(success=False)
        messages = (data.get("messages") if isinstance(data, dict) else None) or []
        first = messages[0] if messages else None
        message_id = first.get("id") if isinstance(first, dict) else None
        return OutboundSendResult(success=True, platform_message_id=message_id)

    async def send_text(self, recipient: str, body: str) -> Optional[str]:
        result = await self._post_message(
            {
                "recipient_type": "individual",
                "to": recipient,
                "type": "text",
                "text": {"preview_url": False, "body": body},
            }
        )
        if not result.success:
            return None
        return result.platform_message_id or ""

    async def send_reaction(self, recipient: str, message_id: str, emoji: str) -> bool:
        result = await self._post_message(
            {
                "recipient_type": "individual",
                "to": recipient,
                "type": "reaction",
                "reaction": {"message_id": message_id, "emoji": emoji},
            }
        )
        return result.success

    async def send_warning_reaction(self, recipient: str, message_id: str) -> bool:
        if not message_id:
            return False
        return await self.send_reaction(recipient, message_id, WARNING_EMOJI)

    async def download_media(self, media_id: str) -> Tuple[bytes, str]:
        """Resolve a media id to its URL, then fetch the bytes.

        Returns ``(content, mime_type)``. Raises WhatsAppMediaError.
        """
        client = self._get_client()
        try:
            meta_resp = await client.get(f"{self._base_url}/{media_id}", headers=self._headers())
            meta_resp.raise_for_status()
            meta = meta_resp.json()
            url = meta.get("url")
            if not url:
                raise WhatsAppMediaError(f"No download URL for media {media_id}")
            content_resp = await client.get(url, headers=self._headers())
            content_resp.raise_for_status()
        except (httpx.HTTPError, ValueError) as e:
            raise WhatsAppMediaError(f"Media download failed for {media_id}: {e}") from e
        mime_type = (
            meta.get("mime_type")
            or content_resp.headers.get("content-type", "").split(";")[0]
            or "application/octet-stream"
        )
        return content_resp.content, mime_type


def build_whatsapp_adapter_from_settings(settings: Optional[Settings] = None) -> WhatsAppAdapter:
    settings = settings or get_settings()
    if not settings.whatsapp_access_token:
        logger.warning("WHATSAPP_ACCESS_TOKEN is not set; outbound messages will be skipped")
    return WhatsAppAdapter(
        access_token=settings.whatsapp_access_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        graph_api_url=settings.whatsapp_graph_api_url,
        api_version=settings.whatsapp_api_version,
        timeout=settings.whatsapp_request_timeout_seconds,
        settings=settings,
    )
