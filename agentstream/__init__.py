"""Streaming agent core: wire decoding, delta aggregation, tool dispatch and the agent loop."""

from __future__ import annotations

from .aggregator import BlockLifecycleAggregator, DeltaAggregator, IndexedDeltaAggregator, create_aggregator
from .config import IncompleteToolPolicy, LoopSettings, load_settings_from_env
from .conversation import ConversationSink, InMemoryConversation
from .dispatcher import ToolDispatcher, ToolExecutor
from .errors import (
    AgentStreamError,
    BufferLimitExceeded,
    IncompleteToolResultsError,
    ProviderAPIError,
    StreamDecodeError,
    ToolExecutionError,
    ToolNotFoundError,
    TransportError,
    UnsupportedProviderError,
)
from .loop import AgentLoop
from .models import (
    AgentLoopState,
    AggregatedTurn,
    LoopOutcome,
    Message,
    Role,
    StopReason,
    ToolCall,
    ToolChoice,
    ToolChoiceMode,
    ToolDefinition,
    ToolResult,
)
from .observer import LoggingObserver, LoopObserver, NullObserver
from .provider_contracts import ProviderContract, get_provider_contract
from .request_builder import ContractRequestBuilder, RequestBuilder
from .transport import HttpxStreamTransport, StreamTransport, create_transport
from .wire import aiter_wire_events

__all__ = [
    "AgentLoop",
    "AgentLoopState",
    "AgentStreamError",
    "AggregatedTurn",
    "BlockLifecycleAggregator",
    "BufferLimitExceeded",
    "ContractRequestBuilder",
    "ConversationSink",
    "DeltaAggregator",
    "HttpxStreamTransport",
    "InMemoryConversation",
    "IncompleteToolPolicy",
    "IncompleteToolResultsError",
    "IndexedDeltaAggregator",
    "LoggingObserver",
    "LoopObserver",
    "LoopOutcome",
    "LoopSettings",
    "Message",
    "NullObserver",
    "ProviderAPIError",
    "ProviderContract",
    "RequestBuilder",
    "Role",
    "StopReason",
    "StreamDecodeError",
    "StreamTransport",
    "ToolCall",
    "ToolChoice",
    "ToolChoiceMode",
    "ToolDefinition",
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolNotFoundError",
    "ToolResult",
    "TransportError",
    "UnsupportedProviderError",
    "aiter_wire_events",
    "create_aggregator",
    "create_transport",
    "get_provider_contract",
    "load_settings_from_env",
]
