"""Provider capability registry for stream shape and request parameter mapping."""

from __future__ import annotations

from dataclasses import dataclass

INDEXED_DELTA = "indexed_delta"
BLOCK_LIFECYCLE = "block_lifecycle"


@dataclass(frozen=True)
class ProviderCapabilities:
    provider: str
    token_limit_param: str
    delta_shape: str
    endpoint_path: str
    default_base_url: str
    supports_reasoning: bool
    supports_native_thinking: bool
    default_max_tokens: int = 4096


_CAPABILITIES: dict[str, ProviderCapabilities] = {
    "openai": ProviderCapabilities(
        provider="openai",
        token_limit_param="max_completion_tokens",
        delta_shape=INDEXED_DELTA,
        endpoint_path="chat/completions",
        default_base_url="https://api.openai.com/v1",
        supports_reasoning=True,
        supports_native_thinking=False,
    ),
    "anthropic": ProviderCapabilities(
        provider="anthropic",
        token_limit_param="max_tokens",
        delta_shape=BLOCK_LIFECYCLE,
        endpoint_path="messages",
        default_base_url="https://api.anthropic.com/v1",
        supports_reasoning=False,
        supports_native_thinking=True,
    ),
}


def get_provider_capabilities(provider: str) -> ProviderCapabilities:
    key = (provider or "").strip().lower()
    if key in _CAPABILITIES:
        return _CAPABILITIES[key]
    # Unknown providers are assumed to speak the OpenAI-compatible dialect.
    return ProviderCapabilities(
        provider=key or "unknown",
        token_limit_param="max_tokens",
        delta_shape=INDEXED_DELTA,
        endpoint_path="chat/completions",
        default_base_url="",
        supports_reasoning=False,
        supports_native_thinking=False,
    )
