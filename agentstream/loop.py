"""Agent loop controller.

Drives a bounded sequence of model turns. Each turn streams one assistant
message, and when the model asks for tools the calls are dispatched and their
results fed into the next turn::

    IDLE -> STREAMING -> AWAITING_TOOL_RESULTS -> STREAMING -> ... -> COMPLETED
                 \\______________________ FAILED(reason) __________/

Messages of a turn are committed only after the turn is fully resolved, so a
failure or cancellation never leaves a partial assistant message behind.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

import httpx

from .config import IncompleteToolPolicy, LoopSettings
from .conversation import ConversationSink
from .dispatcher import ToolDispatcher, ToolExecutor
from .errors import (
    AgentStreamError,
    IncompleteToolResultsError,
    ProviderAPIError,
    StreamDecodeError,
    TransportError,
)
from .models import (
    AgentLoopState,
    AggregatedTurn,
    LoopOutcome,
    Message,
    StopReason,
    ToolCall,
    ToolDefinition,
    ToolResult,
    ToolUseBlock,
    TurnStop,
    WireError,
)
from .observer import LoggingObserver, LoopObserver
from .provider_contracts import ProviderContract
from .request_builder import ContractRequestBuilder, RequestBuilder
from .transport import StreamTransport
from .wire import aiter_wire_events

logger = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"


class AgentLoop:
    """Multi-turn streaming agent loop for one provider."""

    def __init__(
        self,
        contract: ProviderContract,
        transport: StreamTransport,
        executor: ToolExecutor | None = None,
        *,
        model: str,
        settings: LoopSettings | None = None,
        observer: LoopObserver | None = None,
        request_builder: RequestBuilder | None = None,
        sink: ConversationSink | None = None,
        tools: Sequence[ToolDefinition] | None = None,
    ) -> None:
        self.contract = contract
        self.transport = transport
        self.executor = executor
        self.model = model
        self.settings = settings or LoopSettings()
        self.observer: LoopObserver = observer or LoggingObserver()
        self.request_builder: RequestBuilder = request_builder or ContractRequestBuilder(contract)
        self.sink = sink
        if tools is not None:
            self.tools = list(tools)
        else:
            self.tools = executor.definitions() if executor is not None else []
        self._dispatcher = ToolDispatcher.from_settings(executor, self.settings)

        self._state = AgentLoopState.IDLE
        self._task: asyncio.Task | None = None
        self._cancel_requested = False
        self._turns = 0
        self._history: list[Message] = []
        self._appended: list[Message] = []
        self.last_outcome: LoopOutcome | None = None

    @property
    def state(self) -> AgentLoopState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state in (AgentLoopState.STREAMING, AgentLoopState.AWAITING_TOOL_RESULTS)

    def cancel(self) -> None:
        """Request cooperative cancellation of the running loop."""
        self._cancel_requested = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # From inside the loop's own task the flag is enough; it is checked
        # between stream events.
        if task is not current:
            task.cancel()

    async def run(self, conversation: Iterable[Message]) -> LoopOutcome:
        """Run turns until the model stops asking for tools.

        ``conversation`` is the history the first request is built from. The
        outcome lists only the messages appended during this run.
        """
        if self.running:
            raise RuntimeError("agent loop is already running")

        self._history = list(conversation)
        self._appended = []
        self._turns = 0
        self._cancel_requested = False
        self._task = asyncio.current_task()

        try:
            return await self._run_turns()
        except asyncio.CancelledError:
            if not self._cancel_requested:
                self._finish(AgentLoopState.FAILED, CANCELLED_REASON)
                raise
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                task.uncancel()
            return self._finish(AgentLoopState.FAILED, CANCELLED_REASON)
        except AgentStreamError as exc:
            logger.error("Agent loop failed on turn %d: %s", self._turns, exc)
            return self._finish(AgentLoopState.FAILED, str(exc))
        except Exception as exc:
            logger.exception("Agent loop crashed on turn %d", self._turns)
            return self._finish(AgentLoopState.FAILED, f"{type(exc).__name__}: {exc}")
        finally:
            self._task = None
            if self.running:
                self._state = AgentLoopState.FAILED

    async def _run_turns(self) -> LoopOutcome:
        while True:
            self._check_cancelled()
            self._turns += 1
            self._state = AgentLoopState.STREAMING
            self.observer.turn_started(self._turns)

            payload = self.request_builder.build(self._history, self.tools, self.model)
            turn = await self._stream_turn(payload)
            message = turn.message
            calls = list(turn.tool_calls)

            if message.stop_reason is not StopReason.TOOL_USE or not message.has_tool_use:
                self._commit([message])
                self.observer.turn_completed(self._turns, message)
                return self._finish(AgentLoopState.COMPLETED)

            incomplete = [c for c in calls if not c.complete]
            if incomplete:
                resolved = self._resolve_incomplete(message, calls)
                if resolved is None:
                    self._commit([message])
                    self.observer.turn_completed(self._turns, message)
                    return self._finish(
                        AgentLoopState.COMPLETED,
                        f"{len(incomplete)} tool call(s) never completed; stopping",
                    )
                message, calls = resolved

            self._state = AgentLoopState.AWAITING_TOOL_RESULTS
            for call in calls:
                self.observer.tool_call(call)
            results = await self._dispatch(calls)

            tool_messages: list[Message] = []
            for call in sorted(calls, key=lambda c: c.index):
                result = results[call.id]
                self.observer.tool_result(call, result)
                tool_messages.append(Message.from_tool_result(result))

            self._commit([message, *tool_messages])
            self.observer.turn_completed(self._turns, message)

            if self._turns >= self.settings.max_turns:
                logger.warning("Agent loop reached max_turns=%d with pending tool use", self.settings.max_turns)
                return self._finish(
                    AgentLoopState.COMPLETED,
                    f"max_turns ({self.settings.max_turns}) reached",
                    circuit_broken=True,
                )

    async def _stream_turn(self, payload: dict) -> AggregatedTurn:
        aggregator = self.contract.create_aggregator(self.settings, self.observer)
        limit = self.settings.max_consecutive_decode_errors
        consecutive_errors = 0
        complete = False

        try:
            async with self.transport.open(payload) as stream:
                events = aiter_wire_events(stream, self.contract)
                try:
                    async for event in events:
                        self._check_cancelled()
                        if isinstance(event, WireError):
                            if event.is_fatal:
                                raise ProviderAPIError(event.message, event.error_type or "api_error")
                            consecutive_errors += 1
                            self.observer.decode_error(event.message)
                            if consecutive_errors >= limit:
                                raise StreamDecodeError(consecutive_errors, event.message)
                            continue
                        consecutive_errors = 0
                        aggregator.feed(event)
                        if isinstance(event, TurnStop):
                            complete = True
                            break
                finally:
                    await events.aclose()
        except (OSError, httpx.HTTPError) as exc:
            raise TransportError(f"stream dropped: {type(exc).__name__}: {exc}") from exc

        return aggregator.finalize(complete)

    def _resolve_incomplete(
        self,
        message: Message,
        calls: list[ToolCall],
    ) -> tuple[Message, list[ToolCall]] | None:
        """Apply the incomplete-tool policy.

        Returns the message and calls to dispatch, or None to stop the loop.
        """
        ready = [c for c in calls if c.complete]
        policy = self.settings.incomplete_tool_policy
        logger.warning(
            "Turn %d requested tools but only %d of %d calls completed (policy=%s)",
            self._turns,
            len(ready),
            len(calls),
            policy.value,
        )
        if policy is IncompleteToolPolicy.FAIL:
            raise IncompleteToolResultsError(len(calls), len(ready))
        if policy is IncompleteToolPolicy.COMPLETE or not ready:
            return None

        ready_ids = {c.id for c in ready}
        content = tuple(
            block for block in message.content
            if not isinstance(block, ToolUseBlock) or block.id in ready_ids
        )
        return message.with_content(content), ready

    async def _dispatch(self, calls: list[ToolCall]) -> dict[str, ToolResult]:
        results = await self._dispatcher.dispatch(calls)
        for call in calls:
            if call.id not in results:
                logger.error("Dispatcher returned no result for tool call %s (%s)", call.id, call.name)
                results[call.id] = ToolResult.failure(call.id, call.error or "no result produced")
        return results

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise asyncio.CancelledError()

    def _commit(self, messages: list[Message]) -> None:
        for message in messages:
            self._history.append(message)
            self._appended.append(message)
            if self.sink is not None:
                self.sink.append(message)

    def _finish(
        self,
        state: AgentLoopState,
        reason: str | None = None,
        *,
        circuit_broken: bool = False,
    ) -> LoopOutcome:
        self._state = state
        outcome = LoopOutcome(
            state=state,
            messages=tuple(self._appended),
            turns=self._turns,
            reason=reason,
            circuit_broken=circuit_broken,
        )
        self.last_outcome = outcome
        self.observer.loop_finished(outcome)
        return outcome
