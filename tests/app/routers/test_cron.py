"""Tests for the cron drain endpoint."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.agent_event_ledger import AgentEventLedger, EnqueueAgentEvent

URL = "/cron/process-agent-events"


@pytest.fixture
def ledger_enabled(monkeypatch):
    monkeypatch.setenv("AGENT_EVENT_LEDGER_ENABLED", "true")
    monkeypatch.setenv("CRON_SECRET", "cron-secret")


def test_requires_auth(client_no_auth):
    assert client_no_auth.get(URL).status_code == 401
    assert (
        client_no_auth.get(URL, headers={"Authorization": "Bearer nope"}).status_code == 401
    )


def test_trusted_user_agent_is_allowed(client_no_auth):
    resp = client_no_auth.get(URL, headers={"User-Agent": "vercel-cron/1.0"})
    assert resp.status_code == 200


def test_disabled_ledger_is_skipped(client_no_auth):
    resp = client_no_auth.get(URL, headers={"User-Agent": "vercel-cron/1.0"})
    body = resp.json()
    assert body["skipped"] is True
    assert body["reason"] == "ledger_disabled"


def test_drains_pending_events(client_no_auth, ledger_enabled, db, setup_conversation, text_message):
    user, conversation_id = setup_conversation
    AgentEventLedger(db).enqueue(
        EnqueueAgentEvent(
            request_id="req-1",
            user_id=user.id,
            conversation_id=conversation_id,
            message=text_message,
        )
    )
    resp = client_no_auth.get(
        URL,
        params={"limit": 5},
        headers={"Authorization": "Bearer cron-secret", "X-Request-Id": "cron-req"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["request_id"] == "cron-req"
    assert (body["scanned"], body["claimed"], body["completed"], body["failed"]) == (1, 1, 1, 0)


def test_drain_error_returns_500(client_no_auth, ledger_enabled):
    command = MagicMock()
    command.execute = AsyncMock(side_effect=RuntimeError("database is gone"))
    with patch("app.routers.cron.ProcessAgentEventsCommand", return_value=command):
        resp = client_no_auth.get(URL, headers={"Authorization": "Bearer cron-secret"})
    assert resp.status_code == 500
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "database is gone"
