"""Tests for provider request payload layout."""

from __future__ import annotations

import pytest

from agentstream.aggregator import BlockLifecycleAggregator
from agentstream.models import (
    BlockKind,
    BlockStart,
    BlockStop,
    ImageBlock,
    Message,
    Role,
    StopReason,
    TextBlock,
    ThinkingBlock,
    ToolChoice,
    ToolDefinition,
    ToolResult,
    ToolUseBlock,
)
from agentstream.provider_contracts import AnthropicProviderContract, get_provider_contract
from agentstream.request_builder import (
    MIN_THINKING_BUDGET,
    ContractRequestBuilder,
    resolve_thinking_budget,
)

WEATHER = ToolDefinition(
    name="get_weather",
    description="Weather lookup",
    input_schema={"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
)


def _tool_turn() -> list[Message]:
    assistant = Message(
        role=Role.ASSISTANT,
        content=(
            ThinkingBlock(index=0, text="need weather", signature="sig"),
            ThinkingBlock(index=1, text="unsigned"),
            TextBlock(index=2, text="Checking."),
            ToolUseBlock(index=3, id="call_1", name="get_weather", arguments='{"city": "Paris"}'),
            ToolUseBlock(index=4, id="call_2", name="get_weather", arguments='{"city": "Rome"}'),
        ),
        stop_reason=StopReason.TOOL_USE,
    )
    return [
        Message.user("Weather in Paris and Rome?"),
        assistant,
        Message.from_tool_result(ToolResult(call_id="call_1", content="Sunny")),
        Message.from_tool_result(ToolResult.failure("call_2", "service down")),
    ]


class TestOpenAIRequest:
    def test_payload_layout(self):
        contract = get_provider_contract("openai")
        payload = contract.build_request(_tool_turn(), [WEATHER], "gpt-4o", system_prompt="Be brief.")

        assert payload["model"] == "gpt-4o"
        assert payload["stream"] is True
        assert payload["stream_options"] == {"include_usage": True}
        assert payload["max_completion_tokens"] == 4096
        assert payload["tools"] == [{
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Weather lookup",
                "parameters": WEATHER.input_schema,
            },
        }]

        messages = payload["messages"]
        assert messages[0] == {"role": "system", "content": "Be brief."}
        assert messages[1] == {"role": "user", "content": "Weather in Paris and Rome?"}
        assert messages[2]["content"] == "Checking."
        assert [tc["id"] for tc in messages[2]["tool_calls"]] == ["call_1", "call_2"]
        assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": "Sunny"}
        assert messages[4] == {"role": "tool", "tool_call_id": "call_2", "content": "Error: service down"}

    def test_images_become_content_parts(self):
        contract = get_provider_contract("openai")
        message = Message(
            role=Role.USER,
            content=(TextBlock(index=0, text="what is this"), ImageBlock(index=1, ref="https://img.test/a.png")),
        )
        payload = contract.build_request([message], [], "gpt-4o")
        assert payload["messages"][0]["content"] == [
            {"type": "text", "text": "what is this"},
            {"type": "image_url", "image_url": {"url": "https://img.test/a.png"}},
        ]
        assert "tools" not in payload

    def test_thinking_budget_switches_to_reasoning_kwargs(self):
        builder = ContractRequestBuilder(get_provider_contract("openai"), thinking_budget=8000)
        payload = builder.build([Message.user("hi")], [], "o3")
        assert payload["max_completion_tokens"] == 8000
        assert payload["reasoning_effort"] == "high"

    @pytest.mark.parametrize("choice, expected", [
        ("auto", "auto"),
        ("required", "required"),
        ("any", "required"),
        ("none", "none"),
        (ToolChoice.tool("get_weather"), {"type": "function", "function": {"name": "get_weather"}}),
    ])
    def test_tool_choice(self, choice, expected):
        builder = ContractRequestBuilder(get_provider_contract("openai"), tool_choice=choice)
        assert builder.build([Message.user("hi")], [WEATHER], "gpt-4o")["tool_choice"] == expected

    def test_tool_choice_is_omitted_without_tools(self):
        builder = ContractRequestBuilder(get_provider_contract("openai"), tool_choice="required")
        assert "tool_choice" not in builder.build([Message.user("hi")], [], "gpt-4o")


class TestAnthropicRequest:
    def test_payload_layout(self):
        contract = get_provider_contract("anthropic")
        payload = contract.build_request(_tool_turn(), [WEATHER], "claude-test", system_prompt="Be brief.", max_tokens=1000)

        assert payload["system"] == "Be brief."
        assert payload["max_tokens"] == 1000
        assert payload["tools"] == [{
            "name": "get_weather",
            "description": "Weather lookup",
            "input_schema": WEATHER.input_schema,
        }]

        user, assistant, results = payload["messages"]
        assert user == {"role": "user", "content": [{"type": "text", "text": "Weather in Paris and Rome?"}]}
        assert assistant["content"] == [
            {"type": "thinking", "thinking": "need weather", "signature": "sig"},
            {"type": "text", "text": "Checking."},
            {"type": "tool_use", "id": "call_1", "name": "get_weather", "input": {"city": "Paris"}},
            {"type": "tool_use", "id": "call_2", "name": "get_weather", "input": {"city": "Rome"}},
        ]
        assert results == {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "call_1", "content": "Sunny"},
                {"type": "tool_result", "tool_use_id": "call_2", "content": "Error: service down", "is_error": True},
            ],
        }

    def test_data_url_image(self):
        contract = get_provider_contract("anthropic")
        message = Message(role=Role.USER, content=(ImageBlock(index=0, ref="data:image/jpeg;base64,QUJD"),))
        payload = contract.build_request([message], [], "claude-test")
        assert payload["messages"][0]["content"] == [
            {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"}},
        ]

    def test_thinking_budget(self):
        builder = ContractRequestBuilder(get_provider_contract("anthropic"), thinking_budget=10)
        payload = builder.build([Message.user("hi")], [], "claude-test")
        assert payload["max_tokens"] == MIN_THINKING_BUDGET
        assert payload["thinking"] == {"type": "enabled", "budget_tokens": MIN_THINKING_BUDGET - 1}

    def test_thinking_needs_native_support(self):
        contract = AnthropicProviderContract("anthropic-proxy")
        assert contract.build_thinking_kwargs(4096) == {"max_tokens": 4096}

    @pytest.mark.parametrize("choice, expected", [
        ("auto", {"type": "auto"}),
        ("required", {"type": "any"}),
        ("none", {"type": "none"}),
        (ToolChoice.tool("get_weather"), {"type": "tool", "name": "get_weather"}),
    ])
    def test_tool_choice(self, choice, expected):
        builder = ContractRequestBuilder(get_provider_contract("anthropic"), tool_choice=choice)
        assert builder.build([Message.user("hi")], [WEATHER], "claude-test")["tool_choice"] == expected

    def test_redacted_thinking_is_replayed_verbatim(self):
        contract = get_provider_contract("anthropic")
        [start] = contract.decode_payload({
            "type": "content_block_start",
            "index": 0,
            "content_block": {"type": "redacted_thinking", "data": "ENCRYPTED"},
        })
        agg = BlockLifecycleAggregator()
        agg.feed(start)
        agg.feed(BlockStop(0))
        agg.feed(BlockStart(1, BlockKind.TEXT, {"text": "Done."}))
        agg.feed(BlockStop(1))
        message = agg.finalize().message

        payload = contract.build_request([Message.user("hi"), message, Message.user("again")], [], "claude-test")
        assert payload["messages"][1]["content"] == [
            {"type": "redacted_thinking", "data": "ENCRYPTED"},
            {"type": "text", "text": "Done."},
        ]


def test_resolve_thinking_budget():
    assert resolve_thinking_budget(None) is None
    assert resolve_thinking_budget("nope") is None
    assert resolve_thinking_budget(5000) == 5000
    assert resolve_thinking_budget(10**9) == 1_000_000


def test_unknown_tool_choice_rejected():
    with pytest.raises(ValueError):
        ContractRequestBuilder(get_provider_contract("openai"), tool_choice="sometimes")
    with pytest.raises(ValueError):
        ToolChoice.tool("")
