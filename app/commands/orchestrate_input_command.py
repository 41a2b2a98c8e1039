"""
Pathway execution for a routed inbound message.

Text pathways run inline and let handler errors propagate to the caller.
Rich input is acknowledged right away, bounded by a per-kind timeout, and
ends in either the handler's reply or a timeout/failure notice. Sticker and
unsupported messages get a fixed notice. Every branch reports route decision
and end-to-end latency.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Optional

from app.commands.base_whatsapp import BaseWhatsAppCommand
from app.config import Settings, get_settings
from app.constants.notices import UserNotices
from app.core.app_state import state
from app.core.routing import InputClass, RoutedPathway, classify
from app.core.runtime import Messenger, PathwayHandlers, TurnContext
from app.schemas.conversa import MessageKind, NormalizedMessage
from app.services.assistant_reply_service import AssistantReplyService
from app.services.media_input_service import MediaInputService
from app.utils.flags import is_legacy_routing_enabled
from app.utils.metrics import (
    END_TO_END_MS,
    RICH_INPUT_FAILURE_COUNT,
    RICH_INPUT_TIMEOUT_COUNT,
    ROUTE_DECISION_BUDGET_MS,
    ROUTE_DECISION_MS,
    MetricsSink,
    emit_sla_timing,
    end_to_end_budget_ms,
)

logger = logging.getLogger(__name__)

TOOL_INTENT_CLASSES = (InputClass.TEXT_TOOL_INTENT, InputClass.RICH_INPUT_TOOL_INTENT)


@dataclass(frozen=True)
class RichInputTimeouts:
    """Seconds allowed per media kind, plus when the "still working" notice fires."""

    audio: float = 45.0
    image: float = 30.0
    document: float = 30.0
    default: float = 25.0
    progress_notice: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RichInputTimeouts":
        return cls(
            audio=settings.rich_input_timeout_audio_seconds,
            image=settings.rich_input_timeout_image_seconds,
            document=settings.rich_input_timeout_document_seconds,
            default=settings.rich_input_timeout_default_seconds,
            progress_notice=settings.rich_input_progress_notice_seconds,
        )

    def for_kind(self, kind: str) -> float:
        return {
            MessageKind.AUDIO.value: self.audio,
            MessageKind.IMAGE.value: self.image,
            MessageKind.DOCUMENT.value: self.document,
        }.get(kind, self.default)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class InputOrchestrator:
    """Runs the pathway chosen by the router for one message."""

    def __init__(
        self,
        messenger: Messenger,
        handlers: PathwayHandlers,
        metrics: MetricsSink,
        settings: Optional[Settings] = None,
        timeouts: Optional[RichInputTimeouts] = None,
    ) -> None:
        self.messenger = messenger
        self.handlers = handlers
        self.metrics = metrics
        self.settings = settings or get_settings()
        self.timeouts = timeouts or RichInputTimeouts.from_settings(self.settings)

    def route(self, message: NormalizedMessage) -> tuple[RoutedPathway, float]:
        """Classify ``message``; returns the pathway and the decision latency in ms."""
        started = time.perf_counter()
        routed = classify(message, is_legacy_routing_enabled(self.settings))
        return routed, _elapsed_ms(started)

    async def handle(self, message: NormalizedMessage, context: TurnContext) -> RoutedPathway:
        """Route and process in one call."""
        routed, route_ms = self.route(message)
        await self.process_input_by_class(message, routed, context, route_decision_ms=route_ms)
        return routed

    async def process_input_by_class(
        self,
        message: NormalizedMessage,
        routed: RoutedPathway,
        context: TurnContext,
        route_decision_ms: float = 0.0,
    ) -> None:
        """
        Execute the pathway for ``routed``.

        Args:
            message: Normalized inbound message.
            routed: Router decision for the message.
            context: Request and conversation identifiers for logs and handlers.
            route_decision_ms: Time the routing decision took, reported as-is.

        Raises:
            Exception: Whatever the text handlers raise. Rich input failures are
                converted to user notices and never raised.
        """
        started = time.perf_counter()
        tags = {
            "input_class": routed.input_class.value,
            "message_type": message.kind,
            "pathway": routed.pathway,
        }
        emit_sla_timing(
            self.metrics, ROUTE_DECISION_MS, route_decision_ms, tags, ROUTE_DECISION_BUDGET_MS
        )
        context = replace(context, tool_intent=routed.input_class in TOOL_INTENT_CLASSES)
        logger.info(
            "Routing %s message to %s (%s)",
            message.kind,
            routed.pathway,
            routed.reason,
            extra={**context.log_extra(), **tags},
        )
        try:
            if routed.input_class == InputClass.TEXT_SIMPLE:
                await self.handlers.text(message, context)
            elif routed.input_class == InputClass.TEXT_TOOL_INTENT:
                await self.handlers.tool_intent(message, context)
            elif routed.is_rich:
                await self._process_rich_input(message, routed, context)
            elif routed.input_class == InputClass.STICKER_STANDBY:
                await self._notify(message.sender, UserNotices.STICKER_STANDBY, context)
            else:
                await self._notify(message.sender, UserNotices.UNSUPPORTED, context)
        finally:
            emit_sla_timing(
                self.metrics,
                END_TO_END_MS,
                route_decision_ms + _elapsed_ms(started),
                tags,
                end_to_end_budget_ms(routed.input_class.value),
            )

    async def _process_rich_input(
        self, message: NormalizedMessage, routed: RoutedPathway, context: TurnContext
    ) -> None:
        if not message.sender:
            logger.warning("Rich input without an addressable sender", extra=context.log_extra())
            return
        if not message.media_ref:
            await self._notify(message.sender, UserNotices.RICH_INPUT_MISSING_MEDIA, context)
            return

        counter_tags = {"pathway": routed.pathway, "message_type": message.kind}
        timeout = self.timeouts.for_kind(message.kind)
        await self._notify(message.sender, UserNotices.RICH_INPUT_RECEIVED, context)
        notice = asyncio.create_task(self._progress_notice(message.sender, context))
        try:
            await asyncio.wait_for(self.handlers.media(message, context), timeout=timeout)
        except asyncio.TimeoutError:
            notice.cancel()
            self.metrics.increment(RICH_INPUT_TIMEOUT_COUNT, counter_tags)
            logger.warning(
                "Rich input timed out after %.1fs",
                timeout,
                extra={**context.log_extra(), **counter_tags},
            )
            await self._notify(message.sender, UserNotices.RICH_INPUT_TIMEOUT, context)
            await self._react_warning(message, context)
        except Exception as e:
            notice.cancel()
            self.metrics.increment(RICH_INPUT_FAILURE_COUNT, counter_tags)
            logger.exception(
                "Rich input processing failed: %s",
                e,
                extra={**context.log_extra(), **counter_tags},
            )
            await self._notify(message.sender, UserNotices.RICH_INPUT_FAILED, context)
            await self._react_warning(message, context)
        finally:
            notice.cancel()

    async def _progress_notice(self, recipient: str, context: TurnContext) -> None:
        await asyncio.sleep(self.timeouts.progress_notice)
        await self._notify(recipient, UserNotices.RICH_INPUT_STILL_WORKING, context)

    async def _react_warning(self, message: NormalizedMessage, context: TurnContext) -> None:
        if not message.external_message_id:
            return
        try:
            await self.messenger.send_warning_reaction(message.sender, message.external_message_id)
        except Exception as e:
            logger.error("Failed to send warning reaction: %s", e, extra=context.log_extra())

    async def _notify(self, recipient: str, text: str, context: TurnContext) -> None:
        if not recipient:
            return
        try:
            await self.messenger.send_text(recipient, text)
        except Exception as e:
            logger.error("Failed to send notice: %s", e, extra=context.log_extra())


def build_default_orchestrator(
    messenger: Optional[Messenger] = None,
    metrics: Optional[MetricsSink] = None,
    settings: Optional[Settings] = None,
) -> InputOrchestrator:
    """Wire the orchestrator with the WhatsApp adapter and LLM-backed handlers."""
    settings = settings or get_settings()
    adapter = BaseWhatsAppCommand.get_whatsapp_adapter()
    messenger = messenger or adapter
    replies = AssistantReplyService(
        messenger, state.llm, history_limit=settings.conversation_history_limit
    )
    media = MediaInputService(adapter, replies)
    return InputOrchestrator(
        messenger,
        PathwayHandlers(
            text=replies.handle_text,
            tool_intent=replies.handle_tool_intent,
            media=media.handle,
        ),
        metrics or state.metrics,
        settings=settings,
    )
