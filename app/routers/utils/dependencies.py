import hmac
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request

from app.commands.process_inbound_message_command import ProcessInboundMessageCommand
from app.commands.webhooks.whatsapp_command import BackgroundProcessor, WhatsAppWebhookCommand
from app.config import Settings, get_settings
from app.core.app_state import state
from app.utils.rate_limit import RateGuard

REQUEST_ID_HEADER = "X-Request-Id"


def get_request_id(request: Request) -> str:
    """Request id set by the middleware, or a fresh one outside it."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


def get_rate_guard() -> RateGuard:
    return state.rate_guard


def get_background_processor() -> BackgroundProcessor:
    """Coroutine run after the webhook response for each accepted message."""

    async def process(message, request_id: str) -> str:
        return await ProcessInboundMessageCommand().execute(message, request_id)

    return process


def get_whatsapp_webhook_command(
    rate_guard: RateGuard = Depends(get_rate_guard),
    processor: BackgroundProcessor = Depends(get_background_processor),
    settings: Settings = Depends(get_settings),
) -> WhatsAppWebhookCommand:
    return WhatsAppWebhookCommand(rate_guard=rate_guard, processor=processor, settings=settings)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def require_cron_auth(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Allow trusted scheduler user agents or ``Authorization: Bearer <CRON_SECRET>``."""
    user_agent = (request.headers.get("user-agent") or "").lower()
    trusted = [
        prefix.strip().lower()
        for prefix in (settings.cron_trusted_user_agents or "").split(",")
        if prefix.strip()
    ]
    if any(user_agent.startswith(prefix) for prefix in trusted):
        return
    token = _bearer_token(request)
    if settings.cron_secret and token and hmac.compare_digest(token, settings.cron_secret):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")
