"""OpenAI provider contract (chat-completions streaming, indexed-delta shape)."""

from __future__ import annotations

from typing import Any, Sequence

from ..models import (
    BlockDelta,
    ImageBlock,
    Message,
    Ping,
    Role,
    StopReason,
    StreamStart,
    TextDelta,
    ThinkingDelta,
    ToolCallDelta,
    ToolChoice,
    ToolChoiceMode,
    ToolDefinition,
    TurnDelta,
    WireError,
    WireEvent,
)
from .base import ProviderContract

# Chat-completions deltas have no block indexes of their own: reasoning and
# text get fixed slots and tool call N lands at TOOL_INDEX_OFFSET + N.
THINKING_INDEX = 0
TEXT_INDEX = 1
TOOL_INDEX_OFFSET = 2


class OpenAIProviderContract(ProviderContract):
    """OpenAI-specific stream decoding and request layout.

    Also used for unknown providers, which are treated as OpenAI-compatible.
    """

    stop_reasons = {
        "stop": StopReason.END_TURN,
        "tool_calls": StopReason.TOOL_USE,
        "function_call": StopReason.TOOL_USE,
        "length": StopReason.MAX_TOKENS,
        "content_filter": StopReason.END_TURN,
    }

    def build_thinking_kwargs(self, budget: int) -> dict[str, Any]:
        kwargs = self.build_budget_kwargs(budget)
        if self.capabilities.supports_reasoning:
            kwargs["reasoning_effort"] = "high"
        return kwargs

    def build_tool_choice(self, choice: ToolChoice) -> Any:
        if choice.mode is ToolChoiceMode.TOOL:
            return {"type": "function", "function": {"name": choice.name}}
        return choice.mode.value

    def auth_headers(self, api_key: str) -> dict[str, str]:
        headers = super().auth_headers(api_key)
        if api_key:
            headers["authorization"] = f"Bearer {api_key}"
        return headers

    def decode_payload(self, payload: dict[str, Any], event_name: str | None = None) -> list[WireEvent]:
        error = payload.get("error")
        if isinstance(error, dict):
            return [WireError(
                message=str(error.get("message", "unknown error")),
                kind="api",
                error_type=str(error.get("type") or error.get("code") or "api_error"),
            )]

        choices = payload.get("choices")
        if choices is None:
            if payload.get("object") == "chat.completion.chunk" or "usage" in payload:
                return [TurnDelta(usage=payload.get("usage"))] if payload.get("usage") else [Ping()]
            return [WireError(f"Unrecognized chunk: keys={sorted(payload)}")]
        if not isinstance(choices, list):
            raise TypeError("choices must be a list")
        if not choices:
            return [TurnDelta(usage=payload["usage"])] if payload.get("usage") else [Ping()]

        choice = choices[0]
        delta = choice.get("delta") or {}
        events: list[WireEvent] = []

        role = delta.get("role")
        if role:
            events.append(StreamStart(
                message_id=payload.get("id"),
                model=payload.get("model"),
                role=str(role),
            ))

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            events.append(BlockDelta(THINKING_INDEX, ThinkingDelta(reasoning)))

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(BlockDelta(TEXT_INDEX, TextDelta(content)))

        for position, tc in enumerate(delta.get("tool_calls") or []):
            idx = tc.get("index")
            if idx is None:
                idx = position
            function = tc.get("function") or {}
            events.append(BlockDelta(
                TOOL_INDEX_OFFSET + int(idx),
                ToolCallDelta(
                    id=tc.get("id") or None,
                    name=function.get("name"),
                    arguments=function.get("arguments"),
                ),
            ))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            events.append(TurnDelta(
                stop_reason=self.map_stop_reason(finish_reason),
                usage=payload.get("usage"),
            ))
        elif payload.get("usage"):
            events.append(TurnDelta(usage=payload["usage"]))

        return events or [Ping()]

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
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        for message in self.normalize_history(conversation):
            messages.append(_message_param(message))

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            **self._limit_kwargs(max_tokens, thinking_budget),
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    },
                }
                for tool in tools
            ]
            if tool_choice is not None:
                payload["tool_choice"] = self.build_tool_choice(tool_choice)
        return payload


def _message_param(message: Message) -> dict[str, Any]:
    if message.role is Role.TOOL:
        return {
            "role": "tool",
            "tool_call_id": message.tool_call_id or "",
            "content": message.text,
        }

    if message.role is Role.ASSISTANT:
        param: dict[str, Any] = {"role": "assistant", "content": message.text or None}
        tool_uses = message.tool_uses
        if tool_uses:
            param["tool_calls"] = [
                {
                    "id": block.id,
                    "type": "function",
                    "function": {"name": block.name, "arguments": block.arguments or "{}"},
                }
                for block in tool_uses
            ]
        return param

    images = [b for b in message.content if isinstance(b, ImageBlock)]
    if not images:
        return {"role": "user", "content": message.text}
    parts: list[dict[str, Any]] = []
    if message.text:
        parts.append({"type": "text", "text": message.text})
    for image in images:
        parts.append({"type": "image_url", "image_url": {"url": image.ref}})
    return {"role": "user", "content": parts}
