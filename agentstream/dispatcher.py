"""Fan-out/fan-in execution of one turn's tool calls."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol, Sequence

from .config import LoopSettings
from .errors import ToolExecutionError, ToolNotFoundError
from .models import ToolCall, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)


class ToolExecutor(Protocol):
    """Host-side tool registry.

    ``execute`` returns the tool output as text and raises on failure.
    """

    def has_tool(self, name: str) -> bool: ...

    async def execute(self, name: str, arguments: dict[str, Any]) -> str: ...

    def definitions(self) -> list[ToolDefinition]: ...


def _format_timeout(seconds: float) -> str:
    return str(int(seconds)) if float(seconds).is_integer() else str(seconds)


class ToolDispatcher:
    """Runs tool calls concurrently and always returns one result per call.

    Failures of any kind (unknown tool, bad arguments, exceptions, timeouts)
    become error results; only caller cancellation propagates.
    """

    def __init__(
        self,
        executor: ToolExecutor | None,
        *,
        per_call_timeout: float | None = 60.0,
        dispatch_timeout: float | None = 300.0,
        max_concurrency: int = 4,
    ) -> None:
        self.executor = executor
        self.per_call_timeout = per_call_timeout
        self.dispatch_timeout = dispatch_timeout
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    @classmethod
    def from_settings(cls, executor: ToolExecutor | None, settings: LoopSettings) -> "ToolDispatcher":
        return cls(
            executor,
            per_call_timeout=settings.per_call_timeout,
            dispatch_timeout=settings.dispatch_timeout,
            max_concurrency=settings.max_concurrency,
        )

    async def dispatch(self, calls: Sequence[ToolCall]) -> dict[str, ToolResult]:
        results: dict[str, ToolResult] = {}
        runnable: list[tuple[ToolCall, dict[str, Any]]] = []

        for call in calls:
            precheck = self._precheck(call)
            if isinstance(precheck, ToolResult):
                results[call.id] = precheck
            else:
                runnable.append((call, precheck))

        if not runnable:
            return results

        tasks: dict[asyncio.Task[ToolResult], ToolCall] = {
            asyncio.create_task(self._run_one(call, args)): call
            for call, args in runnable
        }
        try:
            done, pending = await asyncio.wait(tasks, timeout=self.dispatch_timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            limit = _format_timeout(self.dispatch_timeout or 0)
            for task in pending:
                call = tasks[task]
                logger.warning("Tool %s (%s) cancelled: dispatch exceeded %ss", call.name, call.id, limit)
                results[call.id] = ToolResult.failure(
                    call.id, f"Tool {call.name} cancelled after dispatch timeout of {limit}s"
                )

        for task in done:
            results[tasks[task].id] = task.result()
        return results

    def _precheck(self, call: ToolCall) -> ToolResult | dict[str, Any]:
        if call.error:
            return ToolResult.failure(call.id, call.error)
        if self.executor is None or not self.executor.has_tool(call.name):
            return ToolResult.failure(call.id, str(ToolNotFoundError(call.name)))
        try:
            return call.parsed_arguments()
        except (json.JSONDecodeError, ValueError) as exc:
            return ToolResult.failure(call.id, f"Invalid arguments for {call.name}: {exc}")

    async def _run_one(self, call: ToolCall, arguments: dict[str, Any]) -> ToolResult:
        async with self._semaphore:
            try:
                return await asyncio.wait_for(self._invoke(call, arguments), timeout=self.per_call_timeout)
            except asyncio.TimeoutError:
                limit = _format_timeout(self.per_call_timeout or 0)
                logger.warning("Tool %s (%s) timed out after %ss", call.name, call.id, limit)
                return ToolResult.failure(call.id, f"Tool {call.name} timed out after {limit}s")

    async def _invoke(self, call: ToolCall, arguments: dict[str, Any]) -> ToolResult:
        # Executor errors, TimeoutError included, are settled here so that a
        # timeout seen by _run_one always means the per-call limit fired.
        assert self.executor is not None
        try:
            output = await self.executor.execute(call.name, arguments)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Tool %s (%s) raised: %s", call.name, call.id, exc)
            reason = exc.reason if isinstance(exc, ToolExecutionError) else str(exc) or type(exc).__name__
            return ToolResult.failure(call.id, f"{call.name}: {reason}")

        if not isinstance(output, str):
            output = json.dumps(output, ensure_ascii=False, default=str)
        return ToolResult(call_id=call.id, content=output)
