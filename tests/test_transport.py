"""Tests for the httpx/httpx-sse transport."""

from __future__ import annotations

import json

import httpx
import pytest

from agentstream.errors import TransportError
from agentstream.loop import AgentLoop
from agentstream.models import AgentLoopState, Message
from agentstream.observer import NullObserver
from agentstream.provider_contracts import get_provider_contract
from agentstream.transport import HttpxStreamTransport, create_transport

from .helpers import anthropic_text_turn

SSE_HEADERS = {"content-type": "text/event-stream"}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_streams_server_sent_events():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = 'data: {"a": 1}\n\ndata: [DONE]\n\n'
        return httpx.Response(200, headers=SSE_HEADERS, content=body.encode())

    async with _client(handler) as client:
        transport = HttpxStreamTransport(
            "https://api.test/v1/chat/completions",
            {"authorization": "Bearer k"},
            client=client,
        )
        async with transport.open({"model": "m", "stream": True}) as events:
            data = [event.data async for event in events]

    assert data == ['{"a": 1}', "[DONE]"]
    [request] = seen
    assert request.method == "POST"
    assert request.headers["authorization"] == "Bearer k"
    assert "text/event-stream" in request.headers["accept"]
    assert json.loads(request.content) == {"model": "m", "stream": True}


@pytest.mark.asyncio
async def test_http_error_status_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"type": "error", "error": {"type": "invalid_request_error", "message": "bad model"}},
        )

    async with _client(handler) as client:
        transport = HttpxStreamTransport("https://api.test/v1/messages", client=client)
        with pytest.raises(TransportError) as exc_info:
            async with transport.open({}):
                pass

    assert exc_info.value.status_code == 400
    assert "bad model" in str(exc_info.value)
    assert exc_info.value.retriable is False


@pytest.mark.asyncio
async def test_connect_errors_are_retried():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, headers=SSE_HEADERS, content=b"data: [DONE]\n\n")

    async with _client(handler) as client:
        transport = HttpxStreamTransport("https://api.test/v1/messages", client=client, connect_attempts=2)
        async with transport.open({}) as events:
            data = [event.data async for event in events]

    assert attempts == 2
    assert data == ["[DONE]"]


@pytest.mark.asyncio
async def test_connect_errors_exhaust_attempts():
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        transport = HttpxStreamTransport("https://api.test/v1/messages", client=client, connect_attempts=1)
        with pytest.raises(TransportError) as exc_info:
            async with transport.open({}):
                pass

    assert attempts == 1
    assert exc_info.value.retriable is True


def test_create_transport_uses_contract_endpoint_and_headers():
    transport = create_transport(get_provider_contract("anthropic"), "sk-ant")
    assert transport.url == "https://api.anthropic.com/v1/messages"
    assert transport.headers["x-api-key"] == "sk-ant"

    custom = create_transport(get_provider_contract("openai"), "k", base_url="http://localhost:8000/v1/")
    assert custom.url == "http://localhost:8000/v1/chat/completions"


def test_create_transport_requires_base_url_for_unknown_provider():
    with pytest.raises(ValueError):
        create_transport(get_provider_contract("local"), "k")


@pytest.mark.asyncio
async def test_agent_loop_over_http():
    def handler(request: httpx.Request) -> httpx.Response:
        body = "\n".join(anthropic_text_turn("Hi from the wire")) + "\n"
        return httpx.Response(200, headers=SSE_HEADERS, content=body.encode())

    contract = get_provider_contract("anthropic")
    async with _client(handler) as client:
        transport = create_transport(contract, "sk-ant", client=client)
        loop = AgentLoop(contract, transport, model="claude-test", observer=NullObserver())
        outcome = await loop.run([Message.user("hello")])

    assert outcome.state is AgentLoopState.COMPLETED
    assert outcome.messages[0].text == "Hi from the wire"
