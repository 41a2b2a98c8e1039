"""
Drain pending agent events from the ledger.

Safe to run repeatedly and from several workers at once: each event is
claimed with a conditional update, so only one drain processes it. Every
claimed event gets an AgentRun with one AgentStep per stage.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session as DBSession

from app.commands.orchestrate_input_command import InputOrchestrator
from app.config import Settings, get_settings
from app.core.routing import RoutedPathway, classify
from app.core.runtime import TurnContext
from app.models.agent_event import EVENT_STATUS_FAILED, AgentEvent
from app.models.agent_run import STEP_STATUS_ERROR, STEP_STATUS_OK, STEP_STATUS_SKIPPED, AgentRun
from app.schemas.agent_event import ProcessPendingResult
from app.services.agent_event_ledger import AgentEventLedger, message_from_event
from app.services.agent_run_service import AgentRunService
from app.utils.flags import LEDGER_MODE_WORKER, agent_event_ledger_mode, is_legacy_routing_enabled
from app.utils.metrics import AGENT_EVENTS_PROCESSED_TOTAL

DEFAULT_LIMIT = 10
MAX_LIMIT = 50

OUTCOME_COMPLETED = "completed"
OUTCOME_RETRY = "retry"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, int(limit)))


class ProcessAgentEventsCommand:
    def __init__(
        self,
        db: DBSession,
        orchestrator_factory: Optional[Callable[[], InputOrchestrator]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.orchestrator_factory = orchestrator_factory
        self.ledger = AgentEventLedger(db, max_attempts=self.settings.agent_event_max_attempts)
        self.runs = AgentRunService(db)
        self.logger = logging.getLogger(__name__)

    async def execute(
        self, limit: Optional[int] = DEFAULT_LIMIT, request_id: str = "ledger-drain"
    ) -> ProcessPendingResult:
        """
        Claim and process up to ``limit`` pending events.

        Args:
            limit: Batch size, clamped to 1..50.
            request_id: Correlation id for logs.

        Returns:
            ProcessPendingResult: scanned/claimed/completed/failed/skipped counters.
        """
        result = ProcessPendingResult()
        self.ledger.reclaim_stale(self.settings.agent_event_stale_after_seconds)
        events = self.ledger.fetch_pending(clamp_limit(limit))
        result.scanned = len(events)

        for pending in events:
            event = self.ledger.try_claim(pending.id)
            if event is None:
                result.skipped += 1
                AGENT_EVENTS_PROCESSED_TOTAL.labels(outcome=OUTCOME_SKIPPED).inc()
                continue
            result.claimed += 1
            outcome = await self._process(event, request_id)
            AGENT_EVENTS_PROCESSED_TOTAL.labels(outcome=outcome).inc()
            if outcome == OUTCOME_COMPLETED:
                result.completed += 1
            else:
                result.failed += 1

        self.logger.info(
            "Agent event drain: %s",
            result.model_dump(),
            extra={"request_id": request_id},
        )
        return result

    def _classify(self, event: AgentEvent) -> tuple[RoutedPathway, float]:
        started = time.perf_counter()
        routed = classify(message_from_event(event), is_legacy_routing_enabled(self.settings))
        return routed, (time.perf_counter() - started) * 1000

    async def _process(self, event: AgentEvent, request_id: str) -> str:
        log_extra = {"request_id": request_id, "event_id": str(event.id)}
        run: Optional[AgentRun] = None
        try:
            message = message_from_event(event)
            routed, route_ms = self._classify(event)
            run = self.runs.start_run(event, routed.input_class.value)
            self.runs.record_step(
                run.id,
                "ingest",
                STEP_STATUS_OK,
                input_snapshot={
                    "idempotency_key": event.idempotency_key,
                    "input_type": event.input_type,
                    "attempt": event.attempt_count,
                },
            )
            self.runs.record_step(
                run.id,
                "classify",
                STEP_STATUS_OK,
                input_snapshot={"kind": message.kind, "has_text": bool(message.text_content)},
                output_snapshot={
                    "input_class": routed.input_class.value,
                    "pathway": routed.pathway,
                    "reason": routed.reason,
                },
                latency_ms=int(route_ms),
            )
            await self._dispatch(event, run, routed, route_ms, request_id)
            self.runs.complete_run(run)
            self.ledger.mark_done(event)
            return OUTCOME_COMPLETED
        except Exception as e:
            self.db.rollback()
            reason = f"{type(e).__name__}: {e}"
            self.logger.exception("Agent event processing failed: %s", e, extra=log_extra)
            if run is not None:
                self._record_failure(run, reason, log_extra)
            status = self.ledger.mark_retry_or_failed(event, reason)
            return OUTCOME_FAILED if status == EVENT_STATUS_FAILED else OUTCOME_RETRY

    def _record_failure(self, run: AgentRun, reason: str, log_extra: dict) -> None:
        # audit rows only; the retry policy runs regardless
        try:
            self.runs.record_step(
                run.id, "failure", STEP_STATUS_ERROR, output_snapshot={"error": reason[:500]}
            )
            self.runs.fail_run(run, reason)
        except Exception as e:
            self.db.rollback()
            self.logger.exception("Failed to record agent run failure: %s", e, extra=log_extra)

    async def _dispatch(
        self,
        event: AgentEvent,
        run: AgentRun,
        routed: RoutedPathway,
        route_ms: float,
        request_id: str,
    ) -> None:
        mode = agent_event_ledger_mode(self.settings)
        if mode != LEDGER_MODE_WORKER or self.orchestrator_factory is None:
            self.runs.record_step(
                run.id,
                "dispatch",
                STEP_STATUS_SKIPPED,
                output_snapshot={"mode": mode, "pathway": routed.pathway},
            )
            return

        started = time.perf_counter()
        await self.orchestrator_factory().process_input_by_class(
            message_from_event(event),
            routed,
            TurnContext(
                request_id=request_id,
                user_id=event.user_id,
                conversation_id=event.conversation_id,
            ),
            route_decision_ms=route_ms,
        )
        self.runs.record_step(
            run.id,
            "dispatch",
            STEP_STATUS_OK,
            output_snapshot={"mode": mode, "pathway": routed.pathway},
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
