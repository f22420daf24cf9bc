"""LoopObserver port and its logging implementation.

The aggregator and the loop controller report progress through an injected
observer instead of a process-wide logger, so hosts can stream deltas to a UI,
record events in tests, or just log.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .models import AggregationIssue, LoopOutcome, Message, ToolCall, ToolResult


class LoopObserver(Protocol):
    def turn_started(self, turn: int) -> None: ...

    def text_delta(self, index: int, text: str) -> None: ...

    def thinking_delta(self, index: int, text: str) -> None: ...

    def decode_error(self, message: str) -> None: ...

    def aggregation_issue(self, issue: AggregationIssue) -> None: ...

    def tool_call(self, call: ToolCall) -> None: ...

    def tool_result(self, call: ToolCall, result: ToolResult) -> None: ...

    def turn_completed(self, turn: int, message: Message) -> None: ...

    def loop_finished(self, outcome: LoopOutcome) -> None: ...


class NullObserver:
    """Observer that ignores every event."""

    def turn_started(self, turn: int) -> None:
        pass

    def text_delta(self, index: int, text: str) -> None:
        pass

    def thinking_delta(self, index: int, text: str) -> None:
        pass

    def decode_error(self, message: str) -> None:
        pass

    def aggregation_issue(self, issue: AggregationIssue) -> None:
        pass

    def tool_call(self, call: ToolCall) -> None:
        pass

    def tool_result(self, call: ToolCall, result: ToolResult) -> None:
        pass

    def turn_completed(self, turn: int, message: Message) -> None:
        pass

    def loop_finished(self, outcome: LoopOutcome) -> None:
        pass


class LoggingObserver:
    """Delegates loop events to a stdlib logger.

    Deltas are logged at DEBUG so a streaming turn does not flood INFO.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger("agentstream")

    def turn_started(self, turn: int) -> None:
        self._log.info("Agent turn %d started", turn)

    def text_delta(self, index: int, text: str) -> None:
        self._log.debug("Text delta [%d]: %r", index, text[:200])

    def thinking_delta(self, index: int, text: str) -> None:
        self._log.debug("Thinking delta [%d]: %d chars", index, len(text))

    def decode_error(self, message: str) -> None:
        self._log.warning("Stream decode error: %s", message)

    def aggregation_issue(self, issue: AggregationIssue) -> None:
        self._log.warning("Aggregation issue at index %s: %s", issue.index, issue.message)

    def tool_call(self, call: ToolCall) -> None:
        if call.error:
            self._log.warning("Tool call %s (%s) not dispatchable: %s", call.id, call.name, call.error)
        else:
            self._log.info("Tool call %s (%s)", call.id, call.name)

    def tool_result(self, call: ToolCall, result: ToolResult) -> None:
        if result.is_error:
            self._log.warning("Tool %s (%s) returned error: %s", call.name, call.id, result.content[:200])
        else:
            self._log.info("Tool %s (%s) returned %d chars", call.name, call.id, len(result.content))

    def turn_completed(self, turn: int, message: Message) -> None:
        self._log.info(
            "Agent turn %d completed (stop_reason=%s, tool_uses=%d)",
            turn,
            message.stop_reason.value if message.stop_reason else None,
            len(message.tool_uses),
        )

    def loop_finished(self, outcome: LoopOutcome) -> None:
        if outcome.succeeded:
            self._log.info(
                "Agent loop completed after %d turns (circuit_broken=%s)",
                outcome.turns,
                outcome.circuit_broken,
            )
        else:
            self._log.error("Agent loop failed after %d turns: %s", outcome.turns, outcome.reason)
