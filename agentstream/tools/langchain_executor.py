"""ToolExecutor backed by LangChain ``BaseTool`` instances."""

from __future__ import annotations

from typing import Any, Sequence

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool

from ..errors import ToolExecutionError, ToolNotFoundError
from ..models import ToolDefinition
from .result_schema import render_tool_output


def tool_definition_from_langchain(tool: BaseTool) -> ToolDefinition:
    function = convert_to_openai_tool(tool)["function"]
    return ToolDefinition(
        name=function["name"],
        description=function.get("description", ""),
        input_schema=function.get("parameters") or {"type": "object", "properties": {}},
    )


class LangChainToolExecutor:
    """Executes tools through ``BaseTool.ainvoke``.

    Tools returning a failed result envelope raise ``ToolExecutionError`` so
    the dispatcher records an error result.
    """

    def __init__(self, tools: Sequence[BaseTool] = ()) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        raw = await tool.ainvoke(arguments)
        text, ok = render_tool_output(raw)
        if not ok:
            raise ToolExecutionError(name, text)
        return text

    def definitions(self) -> list[ToolDefinition]:
        return [tool_definition_from_langchain(tool) for tool in self._tools.values()]
