from typing import Optional

from app.config import get_settings
from app.core.circuit_breaker import build_circuit_breaker_from_settings
from app.utils.metrics import PrometheusMetricsSink
from app.utils.rate_limit import build_rate_guard_from_settings
from app.workers.llm import LLMRunner, build_llm_runner_from_env


class AppState:
    """Process-wide collaborators shared by every request."""

    def __init__(self) -> None:
        settings = get_settings()
        self.rate_guard = build_rate_guard_from_settings(settings)
        self.circuit_breaker = build_circuit_breaker_from_settings(settings)
        self.metrics = PrometheusMetricsSink()
        self._llm: Optional[LLMRunner] = None

    @property
    def llm(self) -> LLMRunner:
        """Built on first use so processes that never call the model skip provider setup."""
        if self._llm is None:
            self._llm = build_llm_runner_from_env(self.circuit_breaker)
        return self._llm


state = AppState()
