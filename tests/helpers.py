"""Scripted transports, fake executors and a recording observer for tests."""

from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from agentstream.models import AggregationIssue, LoopOutcome, Message, ToolCall, ToolDefinition, ToolResult


def sse(obj: Any) -> str:
    """One ``data:`` line for a JSON frame."""
    return f"data: {json.dumps(obj)}"


def openai_chunk(
    delta: dict[str, Any] | None = None,
    finish_reason: str | None = None,
    usage: dict[str, Any] | None = None,
    chunk_id: str = "chatcmpl-1",
) -> str:
    payload: dict[str, Any] = {
        "id": chunk_id,
        "object": "chat.completion.chunk",
        "model": "gpt-4o",
        "choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}],
    }
    if usage is not None:
        payload["usage"] = usage
    return sse(payload)


def openai_tool_delta(index: int, *, id: str | None = None, name: str | None = None, arguments: str | None = None) -> str:
    function: dict[str, Any] = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    tool_call: dict[str, Any] = {"index": index, "function": function}
    if id is not None:
        tool_call["id"] = id
        tool_call["type"] = "function"
    return openai_chunk({"tool_calls": [tool_call]})


def anthropic_frames(event_type: str, **fields: Any) -> list[str]:
    """``event:``/``data:`` lines plus the blank separator for one SSE event."""
    return [f"event: {event_type}", sse({"type": event_type, **fields}), ""]


def anthropic_text_turn(text: str, stop_reason: str = "end_turn") -> list[str]:
    lines: list[str] = []
    lines += anthropic_frames("message_start", message={"id": "msg_1", "model": "claude-test", "role": "assistant"})
    lines += anthropic_frames("content_block_start", index=0, content_block={"type": "text", "text": ""})
    lines += anthropic_frames("content_block_delta", index=0, delta={"type": "text_delta", "text": text})
    lines += anthropic_frames("content_block_stop", index=0)
    lines += anthropic_frames("message_delta", delta={"stop_reason": stop_reason}, usage={"output_tokens": 5})
    lines += anthropic_frames("message_stop")
    return lines


def anthropic_tool_turn(
    tool_id: str,
    name: str,
    arguments: str,
    *,
    index: int = 0,
    stop: bool = True,
    stop_reason: str = "tool_use",
) -> list[str]:
    lines: list[str] = []
    lines += anthropic_frames("message_start", message={"id": f"msg_{tool_id}", "model": "claude-test"})
    lines += anthropic_frames(
        "content_block_start",
        index=index,
        content_block={"type": "tool_use", "id": tool_id, "name": name, "input": {}},
    )
    lines += anthropic_frames(
        "content_block_delta", index=index, delta={"type": "input_json_delta", "partial_json": arguments}
    )
    if stop:
        lines += anthropic_frames("content_block_stop", index=index)
    lines += anthropic_frames("message_delta", delta={"stop_reason": stop_reason})
    lines += anthropic_frames("message_stop")
    return lines


class FakeTransport:
    """Scripted transport: each ``open`` serves the next turn's lines.

    Items may be ``asyncio.Event`` objects; the stream waits on them, which
    lets tests hold a turn open. Exception items are raised mid-stream.
    """

    def __init__(self, turns: list[list[Any]]) -> None:
        self.turns = list(turns)
        self.payloads: list[dict[str, Any]] = []
        self.closed = 0

    @contextlib.asynccontextmanager
    async def open(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[Any]]:
        self.payloads.append(payload)
        if not self.turns:
            raise AssertionError("no scripted turn left")
        lines = self.turns.pop(0)
        try:
            yield self._iter(lines)
        finally:
            self.closed += 1

    async def _iter(self, lines: list[Any]) -> AsyncIterator[Any]:
        for line in lines:
            if isinstance(line, asyncio.Event):
                await line.wait()
                continue
            if isinstance(line, BaseException):
                raise line
            yield line


class RepeatingTransport(FakeTransport):
    """Serves the same turn forever."""

    def __init__(self, lines: list[Any]) -> None:
        super().__init__([])
        self._lines = lines

    @contextlib.asynccontextmanager
    async def open(self, payload: dict[str, Any]) -> AsyncIterator[AsyncIterator[Any]]:
        self.payloads.append(payload)
        try:
            yield self._iter(self._lines)
        finally:
            self.closed += 1


@dataclass(frozen=True)
class ObservedEvent:
    name: str
    payload: Any = None


class RecordingObserver:
    """Observer that records every callback as an ``ObservedEvent``."""

    def __init__(self) -> None:
        self.events: list[ObservedEvent] = []

    def names(self) -> list[str]:
        return [event.name for event in self.events]

    def of(self, name: str) -> list[Any]:
        return [event.payload for event in self.events if event.name == name]

    def turn_started(self, turn: int) -> None:
        self.events.append(ObservedEvent("turn_started", turn))

    def text_delta(self, index: int, text: str) -> None:
        self.events.append(ObservedEvent("text_delta", (index, text)))

    def thinking_delta(self, index: int, text: str) -> None:
        self.events.append(ObservedEvent("thinking_delta", (index, text)))

    def decode_error(self, message: str) -> None:
        self.events.append(ObservedEvent("decode_error", message))

    def aggregation_issue(self, issue: AggregationIssue) -> None:
        self.events.append(ObservedEvent("aggregation_issue", issue))

    def tool_call(self, call: ToolCall) -> None:
        self.events.append(ObservedEvent("tool_call", call))

    def tool_result(self, call: ToolCall, result: ToolResult) -> None:
        self.events.append(ObservedEvent("tool_result", (call, result)))

    def turn_completed(self, turn: int, message: Message) -> None:
        self.events.append(ObservedEvent("turn_completed", (turn, message)))

    def loop_finished(self, outcome: LoopOutcome) -> None:
        self.events.append(ObservedEvent("loop_finished", outcome))


class FakeExecutor:
    """ToolExecutor over a dict of async handlers; records invocations."""

    def __init__(self, handlers: dict[str, Callable[..., Awaitable[Any]]] | None = None) -> None:
        self.handlers = dict(handlers or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def has_tool(self, name: str) -> bool:
        return name in self.handlers

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        self.calls.append((name, arguments))
        return await self.handlers[name](**arguments)

    def definitions(self) -> list[ToolDefinition]:
        return [ToolDefinition(name=name, description=f"{name} tool") for name in self.handlers]
