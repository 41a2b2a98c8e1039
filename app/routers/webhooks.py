"""
Webhook routes for inbound WhatsApp updates.

Meta verifies the subscription with a GET and delivers messages with signed
POSTs. Processing happens after the response; the POST handler only
validates, rate limits and schedules.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from app.commands.webhooks.whatsapp_command import WhatsAppWebhookCommand
from app.routers.utils.dependencies import get_request_id, get_whatsapp_webhook_command
from app.schemas.webhook import WebhookFailed
from app.utils.metrics import WEBHOOK_REQUESTS_TOTAL

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.get("/whatsapp", response_class=PlainTextResponse)
def verify_whatsapp_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    command: WhatsAppWebhookCommand = Depends(get_whatsapp_webhook_command),
) -> str:
    """Echo ``hub.challenge`` when the verify token matches; 401 otherwise."""
    return command.verify(hub_mode, hub_verify_token, hub_challenge)


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    command: WhatsAppWebhookCommand = Depends(get_whatsapp_webhook_command),
    request_id: str = Depends(get_request_id),
):
    """
    Receive WhatsApp webhook deliveries.

    401 on a bad signature and 400 on a malformed payload; every other outcome
    is a 200 so Meta does not retry deliveries we already handled.
    """
    try:
        return await command.execute(request, background_tasks, request_id)
    except HTTPException:
        raise
    except Exception as e:
        WEBHOOK_REQUESTS_TOTAL.labels(outcome="error").inc()
        logger.exception("WhatsApp webhook failed: %s", e, extra={"request_id": request_id})
        return JSONResponse(
            status_code=200, content=WebhookFailed(request_id=request_id).model_dump()
        )
