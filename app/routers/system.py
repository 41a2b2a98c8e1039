from fastapi import APIRouter

from app.config import get_settings
from app.core.app_state import state
from app.utils.flags import agent_event_ledger_mode, is_agent_event_ledger_enabled

router = APIRouter(
    prefix="/system",
    tags=["system"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health")
def get_health() -> dict:
    """Liveness plus upstream provider circuit state and rate guard size."""
    s = get_settings()
    circuits = state.circuit_breaker.get_health_status()
    return {
        "status": "degraded" if any(c["is_open"] for c in circuits.values()) else "ok",
        "app": s.app_name,
        "environment": s.environment,
        "circuits": circuits,
        "rate_guard": state.rate_guard.stats(),
        "agent_event_ledger": {
            "enabled": is_agent_event_ledger_enabled(s),
            "mode": agent_event_ledger_mode(s),
        },
    }
