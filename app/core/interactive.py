"""Resolve interactive (button / list) replies into text turns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.constants.actions import get_action_definition
from app.core.normalizer import extract_interactive_reply
from app.schemas.conversa import MessageKind, NormalizedMessage


@dataclass(frozen=True)
class InteractiveResolution:
    message: NormalizedMessage
    action_id: Optional[str] = None
    direct_response: Optional[str] = None


def resolve_interactive(message: NormalizedMessage) -> InteractiveResolution:
    """
    Map an interactive reply to the text the assistant should see.

    Registered actions answer directly or supply a replacement command;
    anything else falls back to the reply title, then its id. Non-interactive
    messages are returned unchanged.
    """
    if message.kind != MessageKind.INTERACTIVE.value:
        return InteractiveResolution(message)
    reply = extract_interactive_reply(message.raw_payload)
    if reply is None:
        return InteractiveResolution(message)

    definition = get_action_definition(reply.id)
    if definition is not None and definition.direct_response:
        return InteractiveResolution(
            message, action_id=definition.id, direct_response=definition.direct_response
        )
    if definition is not None and definition.replacement_message:
        text = definition.replacement_message
    else:
        text = reply.title or reply.id
    return InteractiveResolution(
        message.with_resolved_text(text),
        action_id=definition.id if definition else reply.id,
    )
