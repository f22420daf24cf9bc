"""Base provider contract for provider-specific stream and request behavior."""

from __future__ import annotations

from typing import Any, Sequence

from ..aggregator import DeltaAggregator, create_aggregator
from ..config import LoopSettings
from ..history_normalizer import normalize_history
from ..models import Message, StopReason, ToolChoice, ToolDefinition, WireEvent
from ..observer import LoopObserver
from ..provider_capabilities import (
    ProviderCapabilities,
    get_provider_capabilities,
)


class ProviderContract:
    """Default provider contract implementation.

    Subclasses supply ``decode_payload`` (provider JSON frame to canonical
    wire events), the stop-reason table and the request payload layout.
    """

    stop_reasons: dict[str, StopReason] = {}

    def __init__(self, provider: str) -> None:
        key = (provider or "").strip().lower()
        self.provider = key or "unknown"
        self.capabilities: ProviderCapabilities = get_provider_capabilities(self.provider)

    @property
    def token_limit_param(self) -> str:
        return self.capabilities.token_limit_param

    def build_budget_kwargs(self, budget: int) -> dict[str, Any]:
        return {self.token_limit_param: int(budget)}

    def build_thinking_kwargs(self, budget: int) -> dict[str, Any]:
        return self.build_budget_kwargs(budget)

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"content-type": "application/json"}

    def map_stop_reason(self, raw: Any) -> StopReason | None:
        if not raw:
            return None
        return self.stop_reasons.get(str(raw), StopReason.END_TURN)

    def create_aggregator(
        self,
        settings: LoopSettings | None = None,
        observer: LoopObserver | None = None,
    ) -> DeltaAggregator:
        return create_aggregator(self.capabilities.delta_shape, settings=settings, observer=observer)

    def decode_payload(self, payload: dict[str, Any], event_name: str | None = None) -> list[WireEvent]:
        raise NotImplementedError(f"Provider '{self.provider}' has no stream decoder")

    def normalize_history(self, messages: Sequence[Message]) -> list[Message]:
        return normalize_history(messages)

    def build_request(
        self,
        conversation: Sequence[Message],
        tools: Sequence[ToolDefinition],
        model: str,
        *,
        max_tokens: int | None = None,
        system_prompt: str | None = None,
        thinking_budget: int | None = None,
        tool_choice: ToolChoice | None = None,
    ) -> dict[str, Any]:
        raise NotImplementedError(f"Provider '{self.provider}' has no request builder")

    def build_tool_choice(self, choice: ToolChoice) -> Any:
        raise NotImplementedError(f"Provider '{self.provider}' has no tool choice mapping")

    def _limit_kwargs(self, max_tokens: int | None, thinking_budget: int | None) -> dict[str, Any]:
        if thinking_budget is not None:
            return self.build_thinking_kwargs(thinking_budget)
        return self.build_budget_kwargs(max_tokens or self.capabilities.default_max_tokens)
