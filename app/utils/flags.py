"""Runtime feature flags backed by settings strings ("1", "true", "yes", "on")."""

from __future__ import annotations

from typing import Optional

from app.config import Settings, get_settings

_TRUTHY = {"1", "true", "yes", "on"}

LEDGER_MODE_SHADOW = "shadow"
LEDGER_MODE_WORKER = "worker"


def is_flag_enabled(raw: Optional[str]) -> bool:
    if raw is None:
        return False
    return raw.strip().lower() in _TRUTHY


def is_agent_event_ledger_enabled(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return is_flag_enabled(settings.agent_event_ledger_enabled)


def is_legacy_routing_enabled(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return is_flag_enabled(settings.legacy_routing_enabled)


def is_onboarding_enabled(settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    return is_flag_enabled(settings.onboarding_enabled)


def agent_event_ledger_mode(settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    mode = (settings.agent_event_ledger_mode or "").strip().lower()
    return LEDGER_MODE_WORKER if mode == LEDGER_MODE_WORKER else LEDGER_MODE_SHADOW
