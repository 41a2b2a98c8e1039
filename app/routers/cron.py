"""Scheduler-triggered maintenance endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.commands.orchestrate_input_command import build_default_orchestrator
from app.commands.process_agent_events_command import (
    DEFAULT_LIMIT,
    ProcessAgentEventsCommand,
)
from app.config import Settings, get_settings
from app.db import get_db
from app.routers.utils.dependencies import get_request_id, require_cron_auth
from app.schemas.agent_event import (
    CronErrorResponse,
    CronSkippedResponse,
    ProcessPendingResponse,
)
from app.utils.flags import is_agent_event_ledger_enabled

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_auth)],
)


@router.get("/process-agent-events")
async def process_agent_events(
    limit: Optional[int] = Query(DEFAULT_LIMIT),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    request_id: str = Depends(get_request_id),
):
    """Drain a batch of pending agent events (limit clamped to 1..50)."""
    if not is_agent_event_ledger_enabled(settings):
        return CronSkippedResponse(reason="ledger_disabled", request_id=request_id)
    try:
        result = await ProcessAgentEventsCommand(
            db,
            orchestrator_factory=lambda: build_default_orchestrator(settings=settings),
            settings=settings,
        ).execute(limit=limit, request_id=request_id)
    except Exception as e:
        logger.exception("Agent event drain failed: %s", e, extra={"request_id": request_id})
        return JSONResponse(
            status_code=500,
            content=CronErrorResponse(error=str(e), request_id=request_id).model_dump(),
        )
    return ProcessPendingResponse(request_id=request_id, **result.model_dump())
