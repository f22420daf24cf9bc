"""Conversation sink port and the in-memory implementation."""

from __future__ import annotations

from typing import Iterable, Iterator, Protocol

from .models import Message


class ConversationSink(Protocol):
    def append(self, message: Message) -> None: ...


class InMemoryConversation:
    """Append-only message list."""

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: list[Message] = list(messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))
