"""
Interactive action registry.

Buttons and list rows we send carry ids like ``action:schedule_confirm``.
When the user taps one, the reply is resolved here into either a direct
answer or a replacement text command for the assistant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

ACTION_PREFIX = "action:"


@dataclass(frozen=True)
class ActionDefinition:
    id: str
    title: str
    category: str
    direct_response: Optional[str] = None
    replacement_message: Optional[str] = None


ACTIONS: dict[str, ActionDefinition] = {
    a.id: a
    for a in (
        ActionDefinition(
            id="action:schedule_confirm",
            title="Confirmar",
            category="schedule",
            direct_response="¡Perfecto! La cita queda confirmada.",
        ),
        ActionDefinition(
            id="action:schedule_reschedule",
            title="Reprogramar",
            category="schedule",
            replacement_message="Necesito reprogramar la cita.",
        ),
        ActionDefinition(
            id="action:schedule_cancel",
            title="Cancelar",
            category="schedule",
            replacement_message="Cancela la cita, por favor.",
        ),
        ActionDefinition(
            id="action:reminder_view",
            title="Ver recordatorios",
            category="reminder",
            replacement_message="Muéstrame mis recordatorios.",
        ),
        ActionDefinition(
            id="action:reminder_edit",
            title="Editar recordatorio",
            category="reminder",
            replacement_message="Quiero editar el recordatorio.",
        ),
        ActionDefinition(
            id="action:reminder_cancel",
            title="Cancelar recordatorio",
            category="reminder",
            replacement_message="Cancela el recordatorio, por favor.",
        ),
    )
}


def normalize_action_id(key: str) -> str:
    return key if key.startswith(ACTION_PREFIX) else f"{ACTION_PREFIX}{key}"


def get_action_definition(key: Optional[str]) -> Optional[ActionDefinition]:
    if not key:
        return None
    return ACTIONS.get(normalize_action_id(key))
