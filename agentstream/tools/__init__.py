"""Tool executors for the agent loop."""

from __future__ import annotations

from .langchain_executor import LangChainToolExecutor, tool_definition_from_langchain
from .registry import FunctionToolExecutor
from .result_schema import make_tool_error, make_tool_result, make_tool_success

__all__ = [
    "FunctionToolExecutor",
    "LangChainToolExecutor",
    "make_tool_error",
    "make_tool_result",
    "make_tool_success",
    "tool_definition_from_langchain",
]
