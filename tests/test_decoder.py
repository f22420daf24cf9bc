"""Tests for the wire event decoder."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

import pytest
from httpx_sse import ServerSentEvent

from agentstream.models import BlockDelta, Ping, TextDelta, TurnStop, WireError
from agentstream.provider_contracts import get_provider_contract
from agentstream.wire import DONE_SENTINEL, WireEventDecoder, aiter_wire_events

from .helpers import openai_chunk, sse


async def _aiter(items: list[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


async def _collect(items: list[Any], provider: str = "openai") -> list[Any]:
    contract = get_provider_contract(provider)
    return [event async for event in aiter_wire_events(_aiter(items), contract)]


class TestFeedLine:
    def test_blank_and_comment_lines_produce_nothing(self):
        decoder = WireEventDecoder(get_provider_contract("openai"))
        assert decoder.feed_line("") == []
        assert decoder.feed_line(": keep-alive") == []
        assert decoder.feed_line("id: 7") == []
        assert decoder.feed_line("retry: 1000") == []

    def test_done_sentinel_stops_decoding(self):
        decoder = WireEventDecoder(get_provider_contract("openai"))
        assert decoder.feed_line(f"data: {DONE_SENTINEL}") == [TurnStop()]
        assert decoder.done is True
        assert decoder.feed_line(openai_chunk({"content": "late"})) == []

    def test_data_prefix_without_space(self):
        decoder = WireEventDecoder(get_provider_contract("openai"))
        line = "data:" + json.dumps({"choices": [{"delta": {"content": "hi"}}]})
        assert decoder.feed_line(line) == [BlockDelta(1, TextDelta("hi"))]

    @pytest.mark.parametrize("line", [
        "data: {",
        "data: 42",
        "data: null",
        'data: ["a"]',
        "data: {\"choices\": 5}",
        "complete garbage",
    ])
    def test_garbage_becomes_decode_error(self, line):
        decoder = WireEventDecoder(get_provider_contract("openai"))
        events = decoder.feed_line(line)
        assert len(events) == 1
        assert isinstance(events[0], WireError)
        assert events[0].kind == "decode"
        assert not events[0].is_fatal

    @pytest.mark.parametrize("provider, line", [
        ("openai", "data: " + "[" * 200_000 + "]" * 200_000),
        ("anthropic", 'data: {"type": "content_block_stop", "index": Infinity}'),
        ("anthropic", 'data: {"type": "content_block_start", "index": -Infinity, "content_block": {"type": "text"}}'),
        ("openai", 'data: {"choices": [{"delta": {"tool_calls": [{"index": Infinity}]}}]}'),
    ])
    def test_overflowing_or_deeply_nested_frames_become_decode_errors(self, provider, line):
        decoder = WireEventDecoder(get_provider_contract(provider))
        events = decoder.feed_line(line)
        assert len(events) == 1
        assert isinstance(events[0], WireError)
        assert not events[0].is_fatal

    def test_event_name_is_used_as_type(self):
        decoder = WireEventDecoder(get_provider_contract("anthropic"))
        assert decoder.feed_line("event: ping") == []
        assert decoder.feed_line("data: {}") == [Ping()]

    def test_blank_line_resets_event_name(self):
        decoder = WireEventDecoder(get_provider_contract("anthropic"))
        decoder.feed_line("event: ping")
        decoder.feed_line("")
        events = decoder.feed_line("data: {}")
        assert isinstance(events[0], WireError)

    def test_adapter_key_error_is_contained(self):
        decoder = WireEventDecoder(get_provider_contract("anthropic"))
        events = decoder.feed_line(sse({"type": "content_block_delta", "delta": {"type": "text_delta"}}))
        assert len(events) == 1
        assert isinstance(events[0], WireError)
        assert "KeyError" in events[0].message


class TestAiterWireEvents:
    @pytest.mark.asyncio
    async def test_stops_after_done(self):
        events = await _collect([
            openai_chunk({"content": "a"}),
            "data: [DONE]",
            openai_chunk({"content": "b"}),
        ])
        assert events == [BlockDelta(1, TextDelta("a")), TurnStop()]

    @pytest.mark.asyncio
    async def test_multi_line_string_chunks(self):
        events = await _collect([openai_chunk({"content": "x"}) + "\n\n" + "data: [DONE]\n\n"])
        assert events == [BlockDelta(1, TextDelta("x")), TurnStop()]

    @pytest.mark.asyncio
    async def test_bytes_split_inside_utf8_character(self):
        raw = ("data: " + json.dumps({"choices": [{"delta": {"content": "café"}}]}, ensure_ascii=False) + "\n\n").encode()
        split_at = raw.index("é".encode()) + 1
        events = await _collect([raw[:split_at], raw[split_at:], b"data: [DONE]\r\n"])
        assert events == [BlockDelta(1, TextDelta("café")), TurnStop()]

    @pytest.mark.asyncio
    async def test_trailing_bytes_without_newline_are_flushed(self):
        events = await _collect([openai_chunk({"content": "tail"}).encode()])
        assert events == [BlockDelta(1, TextDelta("tail"))]

    @pytest.mark.asyncio
    async def test_server_sent_events(self):
        events = await _collect(
            [
                ServerSentEvent(event="ping", data="{}"),
                ServerSentEvent(event="message", data=""),
                ServerSentEvent(event="message_stop", data=json.dumps({"type": "message_stop"})),
            ],
            provider="anthropic",
        )
        assert events == [Ping(), TurnStop()]

    @pytest.mark.asyncio
    async def test_decode_errors_do_not_stop_the_stream(self):
        events = await _collect(["data: {oops", openai_chunk({"content": "ok"})])
        assert isinstance(events[0], WireError)
        assert events[1] == BlockDelta(1, TextDelta("ok"))
