"""History normalization before a conversation is replayed to a provider."""

from __future__ import annotations

from typing import Sequence

from .models import ContentBlock, Message, Role, TextBlock, ThinkingBlock


def _is_empty_block(block: ContentBlock) -> bool:
    if isinstance(block, TextBlock):
        return not block.text.strip()
    if isinstance(block, ThinkingBlock):
        return not block.text.strip() and not block.signature and not block.redacted_data
    return False


def normalize_message(message: Message) -> Message | None:
    """Drop empty text/thinking blocks; return None if an assistant message ends up empty."""
    kept = tuple(b for b in message.content if not _is_empty_block(b))
    if message.role is Role.ASSISTANT and not kept:
        return None
    if len(kept) == len(message.content):
        return message
    return message.with_content(kept)


def normalize_history(messages: Sequence[Message]) -> list[Message]:
    """Normalize history content blocks before sending to providers.

    Tool messages are kept even when their content is empty, because every
    tool call in the history must stay paired with a result.
    """
    normalized: list[Message] = []
    for message in messages:
        if message.role is Role.TOOL:
            normalized.append(message)
            continue
        cleaned = normalize_message(message)
        if cleaned is not None:
            normalized.append(cleaned)
    return normalized
