"""Tests for AgentEventLedger."""

import threading
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.db import Base
from app.models.agent_event import (
    EVENT_STATUS_DONE,
    EVENT_STATUS_FAILED,
    EVENT_STATUS_PENDING,
    EVENT_STATUS_PROCESSING,
    AgentEvent,
)
from app.services.agent_event_ledger import (
    AgentEventLedger,
    EnqueueAgentEvent,
    compute_retry_delay,
    message_from_event,
)
from app.utils.dates import ensure_utc, utcnow


class FakeClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(db, clock):
    return AgentEventLedger(db, max_attempts=3, clock=clock)


@pytest.fixture
def enqueue_request(setup_conversation, text_message):
    user, conversation_id = setup_conversation
    return EnqueueAgentEvent(
        request_id="req-1",
        user_id=user.id,
        conversation_id=conversation_id,
        message=text_message,
    )


def test_enqueue_is_idempotent(ledger, db: Session, enqueue_request):
    event_id = ledger.enqueue(enqueue_request)
    assert event_id is not None
    assert ledger.enqueue(enqueue_request) is None
    assert db.query(AgentEvent).count() == 1

    event = ledger.get_event(event_id)
    assert event.status == EVENT_STATUS_PENDING
    assert event.attempt_count == 0
    assert event.input_type == "text"
    assert event.idempotency_key == enqueue_request.message.external_message_id


def test_payload_round_trips_to_message(ledger, enqueue_request):
    event = ledger.get_event(ledger.enqueue(enqueue_request))
    message = message_from_event(event)
    original = enqueue_request.message
    assert message.sender == original.sender
    assert message.kind == original.kind
    assert message.text_content == original.text_content
    assert message.external_message_id == original.external_message_id
    assert message.received_at_millis == original.received_at_millis


def test_claim_is_exclusive(ledger, enqueue_request):
    event_id = ledger.enqueue(enqueue_request)
    assert [e.id for e in ledger.fetch_pending(10)] == [event_id]

    claimed = ledger.try_claim(event_id)
    assert claimed is not None
    assert claimed.status == EVENT_STATUS_PROCESSING
    assert claimed.attempt_count == 1

    assert ledger.try_claim(event_id) is None
    assert ledger.fetch_pending(10) == []


def test_retry_reschedules_with_backoff(ledger, clock, enqueue_request):
    event = ledger.try_claim(ledger.enqueue(enqueue_request))
    assert ledger.mark_retry_or_failed(event, "model timeout") == EVENT_STATUS_PENDING
    assert event.payload["last_error"] == "model timeout"
    assert ensure_utc(event.available_at) == clock.now + timedelta(seconds=30)

    assert ledger.fetch_pending(10) == []
    clock.advance(30)
    assert len(ledger.fetch_pending(10)) == 1


def test_fails_permanently_at_attempt_cap(ledger, clock, enqueue_request):
    event_id = ledger.enqueue(enqueue_request)
    statuses = []
    for _ in range(3):
        event = ledger.try_claim(event_id)
        assert event is not None
        statuses.append(ledger.mark_retry_or_failed(event, "boom"))
        clock.advance(300)
    assert statuses == [EVENT_STATUS_PENDING, EVENT_STATUS_PENDING, EVENT_STATUS_FAILED]
    assert ledger.get_event(event_id).attempt_count == 3
    assert ledger.try_claim(event_id) is None


def test_mark_done(ledger, enqueue_request):
    event = ledger.try_claim(ledger.enqueue(enqueue_request))
    ledger.mark_done(event)
    assert ledger.get_event(event.id).status == EVENT_STATUS_DONE
    assert ledger.fetch_pending(10) == []


def test_reclaim_stale_requeues_and_fails(ledger, db: Session, clock, setup_conversation):
    user, conversation_id = setup_conversation

    def processing_event(key, attempts):
        event = AgentEvent(
            conversation_id=conversation_id,
            user_id=user.id,
            input_type="text",
            payload={},
            idempotency_key=key,
            status=EVENT_STATUS_PROCESSING,
            attempt_count=attempts,
            available_at=clock.now,
            updated_at=clock.now,
        )
        db.add(event)
        db.commit()
        return event.id

    recoverable = processing_event("stale-1", 1)
    exhausted = processing_event("stale-2", 3)

    assert ledger.reclaim_stale(900) == 0
    clock.advance(901)
    assert ledger.reclaim_stale(900) == 2

    db.expire_all()
    assert ledger.get_event(recoverable).status == EVENT_STATUS_PENDING
    assert ledger.get_event(exhausted).status == EVENT_STATUS_FAILED


@pytest.mark.parametrize("attempts,delay", [(0, 30), (1, 30), (2, 60), (5, 150), (10, 300), (50, 300)])
def test_compute_retry_delay(attempts, delay):
    assert compute_retry_delay(attempts) == delay


def test_concurrent_claims_have_one_winner(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    with factory() as setup:
        event = AgentEvent(
            conversation_id=uuid.uuid4(),
            user_id=uuid.uuid4(),
            input_type="text",
            payload={},
            idempotency_key="wamid.RACE",
            status=EVENT_STATUS_PENDING,
            attempt_count=0,
        )
        setup.add(event)
        setup.commit()
        event_id = event.id

    winners = []
    errors = []

    def worker():
        with factory() as session:
            try:
                if AgentEventLedger(session).try_claim(event_id) is not None:
                    winners.append(threading.get_ident())
            except Exception as e:  # pragma: no cover
                errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    engine.dispose()
    assert errors == []
    assert len(winners) == 1
