"""AgentRunService: write-once audit records for ledger processing."""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.models.agent_event import AgentEvent
from app.models.agent_run import (
    GRAPH_VERSION,
    RUN_STATUS_COMPLETED,
    RUN_STATUS_FAILED,
    RUN_STATUS_RUNNING,
    AgentRun,
    AgentStep,
)
from app.utils.dates import utcnow

FAILURE_REASON_MAX_LENGTH = 500


class AgentRunService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def start_run(self, event: AgentEvent, input_class: Optional[str]) -> AgentRun:
        run = AgentRun(
            event_id=event.id,
            conversation_id=event.conversation_id,
            user_id=event.user_id,
            status=RUN_STATUS_RUNNING,
            input_class=input_class,
            graph_version=GRAPH_VERSION,
            started_at=utcnow(),
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def record_step(
        self,
        run_id: UUID,
        node: str,
        status: str,
        input_snapshot: Optional[dict[str, Any]] = None,
        output_snapshot: Optional[dict[str, Any]] = None,
        latency_ms: Optional[int] = None,
    ) -> AgentStep:
        sequence = self.db.query(AgentStep).filter(AgentStep.run_id == run_id).count() + 1
        step = AgentStep(
            run_id=run_id,
            sequence=sequence,
            node=node,
            status=status,
            input_snapshot=input_snapshot,
            output_snapshot=output_snapshot,
            latency_ms=latency_ms,
        )
        self.db.add(step)
        self.db.commit()
        return step

    def complete_run(self, run: AgentRun) -> AgentRun:
        run.status = RUN_STATUS_COMPLETED
        run.ended_at = utcnow()
        self.db.commit()
        return run

    def fail_run(self, run: AgentRun, reason: str) -> AgentRun:
        run.status = RUN_STATUS_FAILED
        run.ended_at = utcnow()
        run.failure_reason = reason[:FAILURE_REASON_MAX_LENGTH]
        self.db.commit()
        return run

    def get_runs_for_event(self, event_id: UUID) -> list[AgentRun]:
        return (
            self.db.query(AgentRun)
            .filter(AgentRun.event_id == event_id)
            .order_by(AgentRun.started_at.asc())
            .all()
        )
