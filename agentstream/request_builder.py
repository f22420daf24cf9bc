"""Request builders: conversation + tool definitions + model id to payload."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from .models import Message, ToolChoice, ToolDefinition
from .provider_contracts import ProviderContract

logger = logging.getLogger("agentstream")

MIN_THINKING_BUDGET = 1024
MAX_THINKING_BUDGET = 1_000_000


class RequestBuilder(Protocol):
    def build(
        self,
        conversation: Sequence[Message],
        tools: Sequence[ToolDefinition],
        model: str,
    ) -> dict[str, Any]: ...


def resolve_thinking_budget(thinking_budget: int | None) -> int | None:
    """Clamp a thinking budget to a safe integer range; None disables thinking."""
    if thinking_budget is None:
        return None

    try:
        budget = int(thinking_budget)
    except (TypeError, ValueError):
        logger.warning("Invalid thinking_budget=%r; thinking disabled", thinking_budget)
        return None

    if budget < MIN_THINKING_BUDGET:
        logger.warning(
            "thinking_budget=%d is below min=%d; clamping",
            budget,
            MIN_THINKING_BUDGET,
        )
        return MIN_THINKING_BUDGET
    if budget > MAX_THINKING_BUDGET:
        logger.warning(
            "thinking_budget=%d exceeds max=%d; clamping",
            budget,
            MAX_THINKING_BUDGET,
        )
        return MAX_THINKING_BUDGET
    return budget


class ContractRequestBuilder:
    """Default request builder delegating the layout to a provider contract."""

    def __init__(
        self,
        contract: ProviderContract,
        *,
        max_tokens: int | None = None,
        system_prompt: str | None = None,
        thinking_budget: int | None = None,
        tool_choice: ToolChoice | str | None = None,
    ) -> None:
        self.contract = contract
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.thinking_budget = resolve_thinking_budget(thinking_budget)
        self.tool_choice = ToolChoice.coerce(tool_choice)

    def build(
        self,
        conversation: Sequence[Message],
        tools: Sequence[ToolDefinition],
        model: str,
    ) -> dict[str, Any]:
        return self.contract.build_request(
            conversation,
            tools,
            model,
            max_tokens=self.max_tokens,
            system_prompt=self.system_prompt,
            thinking_budget=self.thinking_budget,
            tool_choice=self.tool_choice,
        )
