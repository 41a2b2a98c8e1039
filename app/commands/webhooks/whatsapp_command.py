"""
Command to handle WhatsApp webhook requests.

GET: subscription verification (echo ``hub.challenge`` when the verify token matches).
POST: validate the signature and payload, normalize the first message, apply
the per-sender rate limit and hand the message to background processing.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Awaitable, Callable, Optional, Union

from fastapi import BackgroundTasks, HTTPException, Request
from pydantic import ValidationError

from app.commands.base_whatsapp import BaseWhatsAppCommand
from app.config import Settings, get_settings
from app.constants.notices import UserNotices
from app.core.normalizer import describe_ignored_payload, extract_first_message, normalize
from app.schemas.conversa import NormalizedMessage
from app.schemas.webhook import WebhookAccepted, WebhookIgnored, WebhookRateLimited
from app.schemas.whatsapp import WhatsAppWebhookPayload
from app.utils.metrics import WEBHOOK_REQUESTS_TOTAL
from app.utils.rate_limit import RateGuard
from app.utils.signature import verify_webhook_signature

SUBSCRIBE_MODE = "subscribe"

BackgroundProcessor = Callable[[NormalizedMessage, str], Awaitable[object]]


class WhatsAppWebhookCommand(BaseWhatsAppCommand):
    """
    Command to handle WhatsApp webhook requests.
    Never blocks on message processing: accepted messages are scheduled on
    FastAPI background tasks and the request returns immediately.
    """

    def __init__(
        self,
        rate_guard: RateGuard,
        processor: BackgroundProcessor,
        settings: Optional[Settings] = None,
    ) -> None:
        self.rate_guard = rate_guard
        self.processor = processor
        self.settings = settings or get_settings()
        self.logger = logging.getLogger(__name__)

    def verify(
        self, mode: Optional[str], token: Optional[str], challenge: Optional[str]
    ) -> str:
        """
        Answer the subscription handshake.

        Returns:
            str: The challenge to echo back.

        Raises:
            HTTPException: 401 when the mode or token does not match.
        """
        expected = self.settings.whatsapp_verify_token
        if mode == SUBSCRIBE_MODE and expected and token == expected:
            self.logger.info("WhatsApp webhook verified")
            return challenge or ""
        self.logger.warning("WhatsApp webhook verification failed (mode=%s)", mode)
        raise HTTPException(status_code=401, detail="Verification failed")

    async def execute(
        self, request: Request, background_tasks: BackgroundTasks, request_id: str
    ) -> Union[WebhookAccepted, WebhookIgnored, WebhookRateLimited]:
        """
        Execute the WhatsApp webhook POST.

        Args:
            request: The incoming webhook request (raw body and signature header).
            background_tasks: Where accepted messages are scheduled.
            request_id: Correlation id for this request.

        Returns:
            The response model for the outcome (accepted, ignored or rate limited).

        Raises:
            HTTPException: 401 on an invalid signature, 400 on a malformed payload.
        """
        raw_body = await request.body()
        if not verify_webhook_signature(raw_body, request.headers, self.settings):
            WEBHOOK_REQUESTS_TOTAL.labels(outcome="invalid_signature").inc()
            self.logger.warning("Invalid webhook signature", extra={"request_id": request_id})
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            data = json.loads(raw_body)
            payload = WhatsAppWebhookPayload.model_validate(data)
            extracted = extract_first_message(payload)
        except (ValueError, ValidationError) as e:
            WEBHOOK_REQUESTS_TOTAL.labels(outcome="invalid_payload").inc()
            self.logger.warning(
                "Invalid webhook payload: %s", e, extra={"request_id": request_id}
            )
            raise HTTPException(status_code=400, detail="Invalid payload") from e

        if extracted is None:
            reason = describe_ignored_payload(payload)
            WEBHOOK_REQUESTS_TOTAL.labels(outcome="ignored").inc()
            self.logger.debug("Webhook ignored (%s)", reason, extra={"request_id": request_id})
            return WebhookIgnored(
                status="acknowledged" if reason == "status_update" else "ignored",
                reason=reason,
                request_id=request_id,
            )

        message = normalize(extracted.message.to_raw(), extracted.contact)
        if not self.rate_guard.check_rate_limit(message.sender):
            wait = max(1, math.ceil(self.rate_guard.wait_time(message.sender)))
            WEBHOOK_REQUESTS_TOTAL.labels(outcome="rate_limited").inc()
            background_tasks.add_task(self._send_rate_limit_notice, message.sender, wait)
            return WebhookRateLimited(request_id=request_id, retry_after_seconds=wait)

        background_tasks.add_task(self.processor, message, request_id)
        WEBHOOK_REQUESTS_TOTAL.labels(outcome="accepted").inc()
        self.logger.info(
            "Accepted %s message for processing",
            message.kind,
            extra={"request_id": request_id, "message_id": message.external_message_id},
        )
        return WebhookAccepted(request_id=request_id)

    async def _send_rate_limit_notice(self, recipient: str, wait_seconds: int) -> None:
        try:
            await self.get_whatsapp_adapter().send_text(
                recipient, UserNotices.rate_limited(wait_seconds)
            )
        except Exception as e:
            self.logger.error("Failed to send rate limit notice: %s", e)
