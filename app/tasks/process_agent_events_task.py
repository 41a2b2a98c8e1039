"""Celery task for draining the agent event ledger."""

from __future__ import annotations

import asyncio
import uuid

from app.commands.base_whatsapp import BaseWhatsAppCommand
from app.commands.orchestrate_input_command import build_default_orchestrator
from app.commands.process_agent_events_command import DEFAULT_LIMIT, ProcessAgentEventsCommand
from app.config import get_settings
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.utils.db.db_session_helper import db_session
from app.utils.flags import is_agent_event_ledger_enabled

logger = get_logger("agent_events")


async def _drain(limit: int, request_id: str) -> dict:
    settings = get_settings()
    try:
        with db_session() as db:
            result = await ProcessAgentEventsCommand(
                db,
                orchestrator_factory=lambda: build_default_orchestrator(settings=settings),
                settings=settings,
            ).execute(limit=limit, request_id=request_id)
    finally:
        # each task runs its own event loop; the adapter client must not outlive it
        await BaseWhatsAppCommand.close_whatsapp_adapter()
    return result.model_dump()


@celery_app.task(name="app.tasks.process_agent_events_task.process_agent_events_task")
def process_agent_events_task(limit: int = DEFAULT_LIMIT) -> dict | None:
    """
    Claim and process one batch of pending agent events.
    Scheduled by celery beat; safe to overlap with the cron endpoint.
    """
    if not is_agent_event_ledger_enabled():
        logger.debug("Agent event ledger disabled; skipping drain")
        return None
    request_id = f"celery-{uuid.uuid4()}"
    return asyncio.run(_drain(limit, request_id))
