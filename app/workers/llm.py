from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Union

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserContent,
    UserPromptPart,
)
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider

from app.config import Settings, get_settings
from app.constants.default_system_prompt import DefaultSystemPrompt
from app.core.circuit_breaker import CircuitBreaker
from app.core.fallback import (
    FallbackContext,
    FallbackExecutor,
    FallbackResult,
    can_afford_fallback,
)
from app.infra.logging_config import get_logger

logger = get_logger("llm")

Prompt = Union[str, Sequence[UserContent]]


def current_datetime() -> str:
    """Return the current UTC date and time. Use to resolve relative dates like 'tomorrow'."""
    return f"The current date and time (UTC) is {datetime.now(timezone.utc).isoformat()}."


def _history_to_message_list(history: List[dict[str, str]]) -> List[Any]:
    """Convert list of {role, content} to pydantic_ai ModelMessage list for message_history."""
    out: List[Any] = []
    for item in history:
        role = item.get("role", "user")
        content = (item.get("content") or "").strip()
        if not content:
            continue
        if role == "user":
            out.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        elif role == "assistant":
            out.append(ModelResponse(parts=[TextPart(content=content)]))
        elif role == "system":
            out.append(ModelRequest(parts=[SystemPromptPart(content=content)]))
    return out


def _message_list_with_system_prompt(
    system_prompt: str,
    history: List[dict[str, str]],
) -> List[Any]:
    """Build message_history with system prompt always first, then conversation history."""

    # https://github.com/pydantic/pydantic-ai/issues/4039
    # https://ai.pydantic.dev/agent/#system-prompts
    system_message = ModelRequest(parts=[SystemPromptPart(content=system_prompt)])
    rest = _history_to_message_list(history)
    return [system_message] + rest


class SpendTracker:
    """Process-local daily spend estimate (USD), reset at UTC midnight."""

    def __init__(
        self,
        daily_budget_usd: float,
        cost_per_1k_tokens_usd: float,
        today: Callable[[], date] = lambda: datetime.now(timezone.utc).date(),
    ) -> None:
        self.daily_budget_usd = daily_budget_usd
        self.cost_per_1k_tokens_usd = cost_per_1k_tokens_usd
        self._today = today
        self._day = today()
        self._spent = 0.0
        self._lock = threading.Lock()

    def _roll(self) -> None:
        current = self._today()
        if current != self._day:
            self._day = current
            self._spent = 0.0

    def record_tokens(self, total_tokens: Optional[int]) -> float:
        cost = (total_tokens or 0) / 1000 * self.cost_per_1k_tokens_usd
        with self._lock:
            self._roll()
            self._spent += cost
        return cost

    @property
    def spent_today(self) -> float:
        with self._lock:
            self._roll()
            return self._spent

    @property
    def remaining(self) -> float:
        return max(0.0, self.daily_budget_usd - self.spent_today)


def _build_agent(model_name: str, api_key: Optional[str], api_base: Optional[str], tools: list) -> Agent:
    provider = LiteLLMProvider(api_key=api_key, api_base=api_base)
    model = OpenAIChatModel(model_name, provider=provider)
    return Agent(model, tools=tools)


class LLMRunner:
    """Primary/fallback model runner. Provider health is tracked by the circuit breaker."""

    def __init__(
        self,
        model_name: str,
        breaker: CircuitBreaker,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        system_prompt: Optional[str] = None,
        provider_name: str = "openai",
        fallback_model_name: Optional[str] = None,
        fallback_provider_name: str = "fallback",
        spend: Optional[SpendTracker] = None,
        fallback_estimated_cost_usd: float = 0.01,
    ) -> None:
        logger.info(f"Initializing LLM runner with model {model_name}")
        self._system_prompt = system_prompt or DefaultSystemPrompt.CONTENT
        self._provider_name = provider_name
        self._fallback_provider_name = fallback_provider_name
        self._executor = FallbackExecutor(breaker)
        self._spend = spend or SpendTracker(daily_budget_usd=0.0, cost_per_1k_tokens_usd=0.0)
        self._fallback_estimated_cost_usd = fallback_estimated_cost_usd
        self._agent = _build_agent(model_name, api_key, api_base, [current_datetime])
        self._fallback_agent: Optional[Agent] = None
        if fallback_model_name:
            logger.info(f"LLM fallback model {fallback_model_name}")
            self._fallback_agent = _build_agent(
                fallback_model_name, api_key, api_base, [current_datetime]
            )

    def _system_prompt_for(self, tool_intent: bool) -> str:
        if tool_intent:
            return self._system_prompt.rstrip() + "\n" + DefaultSystemPrompt.TOOL_INTENT_SUFFIX
        return self._system_prompt

    def _budget_allows_fallback(self) -> bool:
        return can_afford_fallback(self._spend.remaining, self._fallback_estimated_cost_usd)

    async def _run_agent(self, agent: Agent, prompt: Prompt, message_history: List[Any]) -> str:
        result = await agent.run(prompt, message_history=message_history)
        try:
            self._spend.record_tokens(result.usage().total_tokens)
        except AttributeError:
            logger.debug("Model result carried no usage information")
        return str(result.output)

    async def run(
        self,
        prompt: Prompt,
        history: Optional[List[dict[str, str]]] = None,
        tool_intent: bool = False,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> str:
        """Run the prompt (text or multimodal parts) with history. Raises on total failure."""
        message_history = _message_list_with_system_prompt(
            self._system_prompt_for(tool_intent), history or []
        )

        async def primary() -> str:
            return await self._run_agent(self._agent, prompt, message_history)

        fallback = None
        if self._fallback_agent is not None:
            fallback_agent = self._fallback_agent

            async def fallback() -> str:
                return await self._run_agent(fallback_agent, prompt, message_history)

        outcome: FallbackResult[str] = await self._executor.execute_with_fallback(
            primary,
            fallback,
            FallbackContext(
                primary_provider=self._provider_name,
                fallback_provider=self._fallback_provider_name,
                conversation_id=conversation_id,
                user_id=user_id,
            ),
            budget_allows_fallback=self._budget_allows_fallback,
        )
        return outcome.result


def build_llm_runner_from_env(
    breaker: CircuitBreaker, settings: Optional[Settings] = None
) -> LLMRunner:
    settings = settings or get_settings()
    logger.info(
        "LLM runner config: model=%s, fallback=%s, api_key=%s, api_base=%s",
        settings.llm_model,
        settings.llm_fallback_model or "(none)",
        "set" if settings.litellm_api_key else "not set",
        settings.litellm_api_base or "(default)",
    )
    if not settings.litellm_api_key:
        logger.warning(
            "LITELLM_API_KEY is not set; set it to a valid OpenAI or LiteLLM API key to avoid 401 errors."
        )

    return LLMRunner(
        model_name=settings.llm_model,
        breaker=breaker,
        api_key=settings.litellm_api_key,
        api_base=settings.litellm_api_base,
        provider_name=settings.llm_provider,
        fallback_model_name=settings.llm_fallback_model,
        fallback_provider_name=settings.llm_fallback_provider,
        spend=SpendTracker(
            daily_budget_usd=settings.llm_daily_budget_usd,
            cost_per_1k_tokens_usd=settings.llm_cost_per_1k_tokens_usd,
        ),
        fallback_estimated_cost_usd=settings.llm_fallback_estimated_cost_usd,
    )
