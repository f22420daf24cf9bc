"""Turns a raw SSE byte/line stream into canonical wire events.

The decoder owns framing only: ``data:``/``event:`` lines, comments, the
``[DONE]`` sentinel and JSON parsing. Mapping a JSON frame onto events is the
provider adapter's job. Nothing raised by the adapter for a bad frame escapes
the decoder; it is reported as a ``WireError`` instead.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, AsyncIterable, AsyncIterator, Protocol, Union

from httpx_sse import ServerSentEvent

from ..models import TurnStop, WireError, WireEvent

DONE_SENTINEL = "[DONE]"

RawStreamItem = Union[str, bytes, ServerSentEvent]


class FrameAdapter(Protocol):
    def decode_payload(self, payload: dict[str, Any], event_name: str | None = None) -> list[WireEvent]: ...


class WireEventDecoder:
    """Stateful line decoder for one stream."""

    def __init__(self, adapter: FrameAdapter) -> None:
        self._adapter = adapter
        self._event_name: str | None = None
        self.done = False

    def feed_line(self, line: str) -> list[WireEvent]:
        line = line.rstrip("\r\n")
        if not line:
            # Blank line terminates the current SSE event.
            self._event_name = None
            return []
        if line.startswith(":"):
            return []
        if line.startswith("event:"):
            self._event_name = line[len("event:"):].strip() or None
            return []
        if line.startswith(("id:", "retry:")):
            return []
        if line.startswith("data:"):
            data = line[len("data:"):]
            if data.startswith(" "):
                data = data[1:]
        else:
            data = line
        return self.decode_data(data, self._event_name)

    def decode_sse(self, event: ServerSentEvent) -> list[WireEvent]:
        name = event.event if event.event and event.event != "message" else None
        if not event.data:
            return []
        return self.decode_data(event.data, name)

    def decode_data(self, data: str, event_name: str | None = None) -> list[WireEvent]:
        if self.done:
            return []
        data = data.strip()
        if not data:
            return []
        if data == DONE_SENTINEL:
            self.done = True
            return [TurnStop()]

        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            return [WireError(f"Malformed JSON frame: {exc.msg} ({_preview(data)})")]
        except RecursionError:
            return [WireError(f"JSON frame nested too deeply: {_preview(data)}")]
        if not isinstance(payload, dict):
            return [WireError(f"Frame is not a JSON object: {_preview(data)}")]

        try:
            return list(self._adapter.decode_payload(payload, event_name))
        except Exception as exc:
            # Any adapter failure is a decode error for this frame only.
            return [WireError(f"Undecodable frame ({type(exc).__name__}: {exc}): {_preview(data)}")]


class _Utf8LineSplitter:
    """Incremental UTF-8 decoder that yields complete lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        return [rest.rstrip("\r")] if rest else []


def _preview(data: str, limit: int = 120) -> str:
    return data if len(data) <= limit else data[:limit] + "..."


async def aiter_wire_events(
    source: AsyncIterable[RawStreamItem],
    adapter: FrameAdapter,
) -> AsyncIterator[WireEvent]:
    """Decode ``source`` into wire events, stopping after ``[DONE]``.

    ``source`` may yield text lines (or multi-line chunks), raw bytes, or
    ``httpx_sse.ServerSentEvent`` objects.
    """
    decoder = WireEventDecoder(adapter)
    splitter = _Utf8LineSplitter()

    async for item in source:
        if isinstance(item, ServerSentEvent):
            events = decoder.decode_sse(item)
        elif isinstance(item, (bytes, bytearray)):
            events = []
            for line in splitter.feed(bytes(item)):
                events.extend(decoder.feed_line(line))
        else:
            events = []
            for line in item.splitlines() or [""]:
                events.extend(decoder.feed_line(line))
        for event in events:
            yield event
        if decoder.done:
            return

    for line in splitter.flush():
        for event in decoder.feed_line(line):
            yield event
