"""Tests for system routes."""


def test_health(client_no_auth):
    resp = client_no_auth.get("/system/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] in ("ok", "degraded")
    assert body["environment"] == "test"
    assert "tracked_senders" in body["rate_guard"]
    assert body["agent_event_ledger"] == {"enabled": False, "mode": "shadow"}
