"""
AgentEventLedger: durable queue operations over ``agent_events``.

- enqueue is idempotent on ``idempotency_key`` (unique constraint)
- try_claim is a single conditional UPDATE ... WHERE status='pending';
  exactly one caller gets rowcount 1, everyone else sees the event as taken
- failures go back to pending with a bounded backoff until the attempt cap
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.core.errors import is_duplicate_error
from app.core.normalizer import idempotency_key
from app.models.agent_event import (
    EVENT_SOURCE_WHATSAPP,
    EVENT_STATUS_DONE,
    EVENT_STATUS_FAILED,
    EVENT_STATUS_PENDING,
    EVENT_STATUS_PROCESSING,
    AgentEvent,
)
from app.schemas.conversa import NormalizedMessage
from app.utils.dates import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
MIN_RETRY_DELAY_SECONDS = 30
MAX_RETRY_DELAY_SECONDS = 300
LAST_ERROR_MAX_LENGTH = 500


def compute_retry_delay(attempt_count: int) -> int:
    """Seconds before a failed event becomes claimable again: 30s per attempt, 30..300."""
    return min(MAX_RETRY_DELAY_SECONDS, max(MIN_RETRY_DELAY_SECONDS, attempt_count * 30))


def build_event_payload(message: NormalizedMessage) -> dict[str, Any]:
    return {
        "sender": message.sender,
        "kind": message.kind,
        "text_content": message.text_content,
        "media_ref": message.media_ref,
        "media_mime_type": message.media_mime_type,
        "external_message_id": message.external_message_id,
        "conversation_hint": message.conversation_hint,
        "received_at_millis": message.received_at_millis,
        "sender_name": message.sender_name,
        "raw": message.raw_payload,
    }


def message_from_event(event: AgentEvent) -> NormalizedMessage:
    """Rebuild the NormalizedMessage mirrored in an event payload."""
    payload = dict(event.payload or {})
    received = payload.get("received_at_millis")
    if not isinstance(received, int):
        received = int(utcnow().timestamp() * 1000)
    return NormalizedMessage(
        sender=str(payload.get("sender") or ""),
        kind=str(payload.get("kind") or event.input_type),
        text_content=payload.get("text_content"),
        media_ref=payload.get("media_ref"),
        media_mime_type=payload.get("media_mime_type"),
        external_message_id=str(payload.get("external_message_id") or ""),
        conversation_hint=payload.get("conversation_hint"),
        received_at_millis=received,
        sender_name=payload.get("sender_name"),
        raw_payload=payload.get("raw") or {"type": event.input_type},
    )


@dataclass(frozen=True)
class EnqueueAgentEvent:
    request_id: str
    user_id: UUID
    conversation_id: UUID
    message: NormalizedMessage


class AgentEventLedger:
    def __init__(
        self,
        db: DBSession,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable = utcnow,
    ) -> None:
        self.db = db
        self.max_attempts = max_attempts
        self._now = clock

    def enqueue(self, event: EnqueueAgentEvent) -> Optional[UUID]:
        """Insert a pending event. Returns its id, or None if the key already exists."""
        key = idempotency_key(event.message, str(event.conversation_id))
        row = AgentEvent(
            conversation_id=event.conversation_id,
            user_id=event.user_id,
            source=EVENT_SOURCE_WHATSAPP,
            input_type=event.message.kind,
            payload=build_event_payload(event.message),
            idempotency_key=key,
            status=EVENT_STATUS_PENDING,
            attempt_count=0,
            available_at=self._now(),
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if is_duplicate_error(e):
                logger.info(
                    "Duplicate agent event ignored",
                    extra={
                        "request_id": event.request_id,
                        "conversation_id": str(event.conversation_id),
                        "idempotency_key": key,
                    },
                )
                return None
            raise
        logger.info(
            "Agent event enqueued",
            extra={
                "request_id": event.request_id,
                "event_id": str(row.id),
                "input_type": row.input_type,
            },
        )
        return row.id

    def fetch_pending(self, limit: int) -> List[AgentEvent]:
        """Pending events whose available_at has passed, oldest first."""
        return (
            self.db.query(AgentEvent)
            .filter(
                AgentEvent.status == EVENT_STATUS_PENDING,
                AgentEvent.available_at <= self._now(),
            )
            .order_by(AgentEvent.created_at.asc())
            .limit(limit)
            .all()
        )

    def try_claim(self, event_id: UUID) -> Optional[AgentEvent]:
        """Atomically move a pending event to processing. None if someone else got it."""
        result = self.db.execute(
            update(AgentEvent)
            .where(AgentEvent.id == event_id, AgentEvent.status == EVENT_STATUS_PENDING)
            .values(
                status=EVENT_STATUS_PROCESSING,
                attempt_count=AgentEvent.attempt_count + 1,
                updated_at=self._now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            return None
        event = self.db.get(AgentEvent, event_id)
        if event is not None:
            self.db.refresh(event)
        return event

    def mark_done(self, event: AgentEvent) -> None:
        event.status = EVENT_STATUS_DONE
        self.db.commit()

    def mark_retry_or_failed(self, event: AgentEvent, reason: str) -> str:
        """Reschedule with backoff, or fail permanently once the attempt cap is hit.

        Returns the new status.
        """
        if event.attempt_count >= self.max_attempts:
            event.status = EVENT_STATUS_FAILED
            self.db.commit()
            logger.error(
                "Agent event %s failed permanently after %d attempts",
                event.id,
                event.attempt_count,
                extra={"event_id": str(event.id), "last_error": reason[:LAST_ERROR_MAX_LENGTH]},
            )
            return EVENT_STATUS_FAILED

        delay = compute_retry_delay(event.attempt_count)
        event.status = EVENT_STATUS_PENDING
        event.available_at = self._now() + timedelta(seconds=delay)
        event.payload = {**(event.payload or {}), "last_error": reason[:LAST_ERROR_MAX_LENGTH]}
        self.db.commit()
        logger.warning(
            "Agent event %s rescheduled in %ds (attempt %d)",
            event.id,
            delay,
            event.attempt_count,
            extra={"event_id": str(event.id)},
        )
        return EVENT_STATUS_PENDING

    def reclaim_stale(self, stale_after_seconds: int) -> int:
        """Return events stuck in processing (worker died after claim) to the queue.

        Events already at the attempt cap are failed instead. Returns the
        number of rows touched.
        """
        cutoff = self._now() - timedelta(seconds=stale_after_seconds)
        stale_filter = (
            AgentEvent.status == EVENT_STATUS_PROCESSING,
            AgentEvent.updated_at < cutoff,
        )
        failed = self.db.execute(
            update(AgentEvent)
            .where(*stale_filter, AgentEvent.attempt_count >= self.max_attempts)
            .values(status=EVENT_STATUS_FAILED, updated_at=self._now())
            .execution_options(synchronize_session=False)
        ).rowcount
        requeued = self.db.execute(
            update(AgentEvent)
            .where(*stale_filter, AgentEvent.attempt_count < self.max_attempts)
            .values(
                status=EVENT_STATUS_PENDING,
                available_at=self._now(),
                updated_at=self._now(),
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.commit()
        if failed or requeued:
            logger.warning(
                "Reclaimed stale agent events: %d requeued, %d failed", requeued, failed
            )
        return (failed or 0) + (requeued or 0)

    def get_event(self, event_id: UUID) -> Optional[AgentEvent]:
        return self.db.query(AgentEvent).filter(AgentEvent.id == event_id).first()
