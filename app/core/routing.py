"""
Input routing: deterministic classification of a normalized message into a
processing pathway. No I/O, no side effects.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.schemas.conversa import MessageKind, NormalizedMessage


class InputClass(str, Enum):
    TEXT_SIMPLE = "TEXT_SIMPLE"
    TEXT_TOOL_INTENT = "TEXT_TOOL_INTENT"
    RICH_INPUT = "RICH_INPUT"
    RICH_INPUT_TOOL_INTENT = "RICH_INPUT_TOOL_INTENT"
    STICKER_STANDBY = "STICKER_STANDBY"
    UNSUPPORTED = "UNSUPPORTED"


@dataclass(frozen=True)
class RoutedPathway:
    input_class: InputClass
    reason: str

    @property
    def pathway(self) -> str:
        return PATHWAYS[self.input_class]

    @property
    def is_rich(self) -> bool:
        return self.input_class in (InputClass.RICH_INPUT, InputClass.RICH_INPUT_TOOL_INTENT)


PATHWAYS = {
    InputClass.TEXT_SIMPLE: "conversation",
    InputClass.TEXT_TOOL_INTENT: "tool_intent",
    InputClass.RICH_INPUT: "rich_input",
    InputClass.RICH_INPUT_TOOL_INTENT: "rich_input_tool_intent",
    InputClass.STICKER_STANDBY: "sticker_standby",
    InputClass.UNSUPPORTED: "unsupported",
}

RICH_INPUT_KINDS = {
    MessageKind.AUDIO.value,
    MessageKind.IMAGE.value,
    MessageKind.DOCUMENT.value,
}

# Tool-intent triggers; matched against lowercase text and an accent-free copy.
TOOL_INTENT_PATTERNS = {
    "reminder": re.compile(
        r"recuerd|record|no olvid|avis|tengo que|debo|me recuerdas|recordar|remind|don't forget"
    ),
    "schedule": re.compile(
        r"agenda|agendar|reserva|reservar|programa|programar|reun|cita|schedule|meeting|appointment"
    ),
    "expense": re.compile(
        r"gast|pague|pagó|pago|compre|compr|costo|costó|sali|salio|me gaste|gasto|spent|expense"
    ),
}


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def detect_tool_intent(text: Optional[str]) -> Optional[str]:
    """Name of the first matching intent (reminder, schedule, expense) or None."""
    if not text:
        return None
    lowered = text.lower()
    plain = strip_accents(lowered)
    for name, pattern in TOOL_INTENT_PATTERNS.items():
        if pattern.search(lowered) or pattern.search(plain):
            return name
    return None


def has_tool_intent(text: Optional[str]) -> bool:
    return detect_tool_intent(text) is not None


def classify_input(
    kind: str, text: Optional[str], legacy_routing_enabled: bool
) -> RoutedPathway:
    """Decision table mapping (kind, text, flag) to a pathway."""
    if kind == MessageKind.STICKER.value:
        return RoutedPathway(
            InputClass.STICKER_STANDBY, "sticker processing is disabled by policy"
        )

    intent = detect_tool_intent(text) if legacy_routing_enabled else None

    if kind == MessageKind.TEXT.value:
        if intent:
            return RoutedPathway(
                InputClass.TEXT_TOOL_INTENT, f"tool intent detected in text ({intent})"
            )
        return RoutedPathway(InputClass.TEXT_SIMPLE, "plain text conversation")

    if kind in RICH_INPUT_KINDS:
        if intent:
            return RoutedPathway(
                InputClass.RICH_INPUT_TOOL_INTENT,
                f"rich input with tool hint in caption ({intent})",
            )
        return RoutedPathway(
            InputClass.RICH_INPUT, "rich media requires delegated processing"
        )

    return RoutedPathway(InputClass.UNSUPPORTED, f"unsupported type: {kind}")


def classify(message: NormalizedMessage, legacy_routing_enabled: bool) -> RoutedPathway:
    return classify_input(message.kind, message.text_content, legacy_routing_enabled)
