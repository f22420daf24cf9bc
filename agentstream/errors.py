"""Exception types raised by the streaming agent core."""

from __future__ import annotations


class AgentStreamError(Exception):
    """Base class for all agentstream errors."""

    def __init__(self, message: str, retriable: bool = False) -> None:
        super().__init__(message)
        self.retriable = retriable


class TransportError(AgentStreamError):
    """Raised when the HTTP stream cannot be opened or drops mid-stream."""

    def __init__(self, reason: str, status_code: int | None = None) -> None:
        retriable = status_code is None or status_code == 429 or status_code >= 500
        super().__init__(f"Stream transport failed: {reason}", retriable=retriable)
        self.status_code = status_code


class StreamDecodeError(AgentStreamError):
    """Raised when a stream keeps producing frames that cannot be decoded."""

    def __init__(self, consecutive_failures: int, last_error: str) -> None:
        super().__init__(
            f"Stream decoding failed {consecutive_failures} times in a row: {last_error}"
        )
        self.consecutive_failures = consecutive_failures


class ProviderAPIError(AgentStreamError):
    """Raised when the provider reports an error event inside the stream."""

    def __init__(self, message: str, error_type: str = "api_error") -> None:
        super().__init__(f"Provider error ({error_type}): {message}")
        self.error_type = error_type


class BufferLimitExceeded(AgentStreamError):
    """Raised when a text or argument buffer grows past the configured guard."""

    def __init__(self, index: int, limit: int) -> None:
        super().__init__(f"Buffer for block {index} exceeded {limit} characters")
        self.index = index
        self.limit = limit


class ToolNotFoundError(AgentStreamError):
    """Raised when a tool name does not resolve against the executor registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolExecutionError(AgentStreamError):
    """Raised when a tool invocation fails or times out."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Tool '{name}' failed: {reason}")
        self.name = name
        self.reason = reason


class IncompleteToolResultsError(AgentStreamError):
    """Raised when a turn signals tool use but its tool calls cannot all be answered."""

    def __init__(self, expected: int, available: int) -> None:
        super().__init__(
            f"Incomplete tool calls: {available} of {expected} can be dispatched"
        )
        self.expected = expected
        self.available = available


class UnsupportedProviderError(AgentStreamError):
    """Raised when no provider contract exists for the requested provider."""

    def __init__(self, provider: str, supported: tuple[str, ...]) -> None:
        super().__init__(
            f"Unsupported provider: {provider!r}. Supported: {', '.join(supported)}"
        )
        self.provider = provider
