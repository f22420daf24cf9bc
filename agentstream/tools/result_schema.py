from __future__ import annotations

import json
from typing import Any


def make_tool_result(
    *,
    kind: str,
    text: str,
    success: bool,
    error: str | None = None,
    data: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a normalized tool result envelope.

    Tools may return this envelope instead of plain text; executors render it
    to the text that goes back to the model and treat ``success=False`` as a
    failed call.
    """
    return {
        "kind": kind,
        "text": text,
        "success": bool(success),
        "error": error if not success else None,
        "data": data or {},
        "meta": meta or {},
    }


def make_tool_success(
    *,
    kind: str,
    text: str,
    data: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return make_tool_result(kind=kind, text=text, success=True, data=data, meta=meta)


def make_tool_error(
    *,
    kind: str,
    error: str,
    text: str | None = None,
    data: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    rendered = text if text is not None else f"Error: {error}"
    return make_tool_result(
        kind=kind,
        text=rendered,
        success=False,
        error=error,
        data=data,
        meta=meta,
    )


def is_tool_envelope(result: Any) -> bool:
    return (
        isinstance(result, dict)
        and isinstance(result.get("kind"), str)
        and isinstance(result.get("text"), str)
        and isinstance(result.get("success"), bool)
    )


def extract_text_from_blocks(result: list[Any]) -> str:
    return " ".join(
        block.get("text", "")
        for block in result
        if isinstance(block, dict) and block.get("type") == "text"
    )


def render_tool_output(result: Any) -> tuple[str, bool]:
    """Render raw tool output to ``(text, ok)``."""
    if is_tool_envelope(result):
        if result["success"]:
            return result["text"], True
        return str(result.get("error") or result["text"]), False
    if isinstance(result, str):
        return result, True
    if isinstance(result, list) and all(isinstance(b, dict) for b in result):
        text = extract_text_from_blocks(result)
        if text:
            return text, True
    content = getattr(result, "content", None)
    if isinstance(content, str):
        # ToolMessage-like objects returned by some LangChain tools.
        return content, getattr(result, "status", "success") != "error"
    return json.dumps(result, ensure_ascii=False, default=str), True
