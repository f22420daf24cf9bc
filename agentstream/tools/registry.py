"""ToolExecutor over plain Python callables."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable

from ..errors import ToolExecutionError, ToolNotFoundError
from ..models import ToolDefinition
from .result_schema import render_tool_output


@dataclass
class _Registered:
    func: Callable[..., Any]
    definition: ToolDefinition = field(repr=False)


class FunctionToolExecutor:
    """Registry of sync or async callables invoked with keyword arguments."""

    def __init__(self) -> None:
        self._tools: dict[str, _Registered] = {}

    def register(
        self,
        func: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[..., Any]:
        tool_name = name or func.__name__
        if tool_name in self._tools:
            raise ValueError(f"Tool already registered: {tool_name}")
        definition = ToolDefinition(
            name=tool_name,
            description=description or inspect.getdoc(func) or "",
            input_schema=input_schema or {"type": "object", "properties": {}},
        )
        self._tools[tool_name] = _Registered(func=func, definition=definition)
        return func

    def tool(self, name: str | None = None, **kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            return self.register(func, name=name, **kwargs)

        return decorator

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        entry = self._tools.get(name)
        if entry is None:
            raise ToolNotFoundError(name)
        result = entry.func(**arguments)
        if inspect.isawaitable(result):
            result = await result
        text, ok = render_tool_output(result)
        if not ok:
            raise ToolExecutionError(name, text)
        return text

    def definitions(self) -> list[ToolDefinition]:
        return [entry.definition for entry in self._tools.values()]
