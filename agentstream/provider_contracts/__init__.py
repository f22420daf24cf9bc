"""Provider contract registry."""

from __future__ import annotations

from ..errors import UnsupportedProviderError
from .anthropic import AnthropicProviderContract
from .base import ProviderContract
from .openai import OpenAIProviderContract

SUPPORTED_PROVIDERS = ("openai", "anthropic")


def get_provider_contract(provider: str) -> ProviderContract:
    key = (provider or "").strip().lower()
    if not key:
        raise UnsupportedProviderError(provider, SUPPORTED_PROVIDERS)
    if key == "anthropic":
        return AnthropicProviderContract(key)
    # OpenAI and any OpenAI-compatible gateway share the chat-completions dialect.
    return OpenAIProviderContract(key)


__all__ = [
    "AnthropicProviderContract",
    "OpenAIProviderContract",
    "ProviderContract",
    "SUPPORTED_PROVIDERS",
    "get_provider_contract",
]
