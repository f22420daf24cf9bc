"""Anthropic provider contract (messages streaming, block-lifecycle shape)."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..models import (
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    ImageBlock,
    Message,
    Ping,
    Role,
    SignatureDelta,
    StopReason,
    StreamStart,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ThinkingDelta,
    ToolArgsDelta,
    ToolChoice,
    ToolChoiceMode,
    ToolDefinition,
    ToolUseBlock,
    TurnDelta,
    TurnStop,
    WireError,
    WireEvent,
)
from .base import ProviderContract

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

_TOOL_BLOCK_TYPES = ("tool_use", "server_tool_use")


class AnthropicProviderContract(ProviderContract):
    stop_reasons = {
        "end_turn": StopReason.END_TURN,
        "max_tokens": StopReason.MAX_TOKENS,
        "tool_use": StopReason.TOOL_USE,
        "stop_sequence": StopReason.STOP_SEQUENCE,
        "pause_turn": StopReason.END_TURN,
        "refusal": StopReason.END_TURN,
    }

    def build_thinking_kwargs(self, budget: int) -> dict[str, Any]:
        if not self.capabilities.supports_native_thinking:
            logger.warning("Provider %s has no native thinking; sending a plain token limit", self.provider)
            return self.build_budget_kwargs(budget)
        return {
            "max_tokens": budget,
            "thinking": {
                "type": "enabled",
                "budget_tokens": budget - 1,
            },
        }

    def build_tool_choice(self, choice: ToolChoice) -> Any:
        if choice.mode is ToolChoiceMode.TOOL:
            return {"type": "tool", "name": choice.name}
        if choice.mode is ToolChoiceMode.REQUIRED:
            return {"type": "any"}
        return {"type": choice.mode.value}

    def auth_headers(self, api_key: str) -> dict[str, str]:
        headers = super().auth_headers(api_key)
        headers["x-api-key"] = api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return headers

    def decode_payload(self, payload: dict[str, Any], event_name: str | None = None) -> list[WireEvent]:
        event_type = payload.get("type") or event_name
        if not event_type:
            return [WireError("Frame has no event type")]

        if event_type == "message_start":
            message = payload.get("message") or {}
            return [StreamStart(
                message_id=message.get("id"),
                model=message.get("model"),
                role=str(message.get("role") or Role.ASSISTANT.value),
            )]

        if event_type == "content_block_start":
            return [self._decode_block_start(int(payload["index"]), payload.get("content_block") or {})]

        if event_type == "content_block_delta":
            return [self._decode_block_delta(int(payload["index"]), payload.get("delta") or {})]

        if event_type == "content_block_stop":
            return [BlockStop(int(payload["index"]))]

        if event_type == "message_delta":
            delta = payload.get("delta") or {}
            return [TurnDelta(
                stop_reason=self.map_stop_reason(delta.get("stop_reason")),
                stop_sequence=delta.get("stop_sequence"),
                usage=payload.get("usage"),
            )]

        if event_type == "message_stop":
            return [TurnStop()]

        if event_type == "ping":
            return [Ping()]

        if event_type == "error":
            error = payload.get("error") or {}
            return [WireError(
                message=str(error.get("message", "unknown error")),
                kind="api",
                error_type=str(error.get("type") or "api_error"),
            )]

        return [WireError(f"Unknown event type: {event_type}")]

    def _decode_block_start(self, index: int, block: dict[str, Any]) -> WireEvent:
        block_type = block.get("type")
        if block_type == "text":
            return BlockStart(index, BlockKind.TEXT, {"text": block.get("text") or ""})
        if block_type in _TOOL_BLOCK_TYPES:
            return BlockStart(index, BlockKind.TOOL_USE, {
                "id": block.get("id"),
                "name": block.get("name"),
                "input": block.get("input"),
            })
        if block_type == "thinking":
            return BlockStart(index, BlockKind.THINKING, {
                "text": block.get("thinking") or "",
                "signature": block.get("signature"),
            })
        if block_type == "redacted_thinking":
            return BlockStart(index, BlockKind.THINKING, {"text": "", "redacted_data": block.get("data") or ""})
        if block_type == "image":
            source = block.get("source") or {}
            return BlockStart(index, BlockKind.IMAGE, {"ref": source.get("url") or source.get("data") or ""})
        return WireError(f"Unknown content block type at index {index}: {block_type}")

    def _decode_block_delta(self, index: int, delta: dict[str, Any]) -> WireEvent:
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return BlockDelta(index, TextDelta(str(delta["text"])))
        if delta_type == "input_json_delta":
            return BlockDelta(index, ToolArgsDelta(str(delta.get("partial_json") or "")))
        if delta_type == "thinking_delta":
            return BlockDelta(index, ThinkingDelta(str(delta["thinking"])))
        if delta_type == "signature_delta":
            return BlockDelta(index, SignatureDelta(str(delta["signature"])))
        return WireError(f"Unknown delta type at index {index}: {delta_type}")

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
        for message in self.normalize_history(conversation):
            if message.role is Role.TOOL:
                result_block = {
                    "type": "tool_result",
                    "tool_use_id": message.tool_call_id or "",
                    "content": message.text,
                }
                if message.is_error:
                    result_block["is_error"] = True
                # Consecutive tool results travel in a single user message.
                previous = messages[-1] if messages else None
                if previous and previous["role"] == "user" and _is_tool_result_list(previous["content"]):
                    previous["content"].append(result_block)
                else:
                    messages.append({"role": "user", "content": [result_block]})
                continue
            if message.role is Role.ASSISTANT:
                content = _assistant_blocks(message)
                if content:
                    messages.append({"role": "assistant", "content": content})
                continue
            messages.append({"role": "user", "content": _user_blocks(message)})

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": True,
            **self._limit_kwargs(max_tokens, thinking_budget),
        }
        if system_prompt:
            payload["system"] = system_prompt
        if tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema,
                }
                for tool in tools
            ]
            if tool_choice is not None:
                payload["tool_choice"] = self.build_tool_choice(tool_choice)
        return payload


def _is_tool_result_list(content: Any) -> bool:
    return (
        isinstance(content, list)
        and bool(content)
        and all(isinstance(b, dict) and b.get("type") == "tool_result" for b in content)
    )


def _assistant_blocks(message: Message) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, ThinkingBlock):
            if block.redacted_data:
                blocks.append({"type": "redacted_thinking", "data": block.redacted_data})
            # Unsigned thinking is rejected on replay.
            elif block.signature:
                blocks.append({"type": "thinking", "thinking": block.text, "signature": block.signature})
        elif isinstance(block, TextBlock):
            blocks.append({"type": "text", "text": block.text})
        elif isinstance(block, ToolUseBlock):
            blocks.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.parsed_arguments(),
            })
    return blocks


def _user_blocks(message: Message) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            blocks.append({"type": "text", "text": block.text})
        elif isinstance(block, ImageBlock):
            if block.ref.startswith(("http://", "https://")):
                source = {"type": "url", "url": block.ref}
            else:
                source = _data_url_source(block.ref)
            blocks.append({"type": "image", "source": source})
    return blocks


def _data_url_source(ref: str) -> dict[str, Any]:
    if ref.startswith("data:") and ";base64," in ref:
        header, data = ref.split(";base64,", 1)
        return {"type": "base64", "media_type": header[len("data:"):], "data": data}
    return {"type": "base64", "media_type": "image/png", "data": ref}
