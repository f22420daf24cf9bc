"""Canonical data model shared by the decoder, aggregators and the loop."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, replace
from typing import Any, Union


class StopReason(str, enum.Enum):
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    STOP_SEQUENCE = "stop_sequence"

    @property
    def is_terminal(self) -> bool:
        return self is not StopReason.TOOL_USE


class BlockKind(str, enum.Enum):
    TEXT = "text"
    TOOL_USE = "tool_use"
    THINKING = "thinking"
    IMAGE = "image"


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class AgentLoopState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOL_RESULTS = "awaiting_tool_results"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Wire events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolArgsDelta:
    partial_json: str


@dataclass(frozen=True)
class ToolCallDelta:
    """Indexed-delta fragment: every field is optional and concatenated."""

    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True)
class SignatureDelta:
    signature: str


DeltaPayload = Union[TextDelta, ToolArgsDelta, ToolCallDelta, ThinkingDelta, SignatureDelta]


@dataclass(frozen=True)
class StreamStart:
    message_id: str | None = None
    model: str | None = None
    role: str = Role.ASSISTANT.value


@dataclass(frozen=True)
class BlockStart:
    """Opens the block at ``index``.

    ``initial`` carries whatever the provider sends with the start frame: the
    tool id/name for tool-use blocks, leading text, or an image reference.
    """

    index: int
    kind: BlockKind
    initial: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BlockDelta:
    index: int
    payload: DeltaPayload


@dataclass(frozen=True)
class BlockStop:
    index: int


@dataclass(frozen=True)
class TurnDelta:
    stop_reason: StopReason | None = None
    stop_sequence: str | None = None
    usage: dict[str, Any] | None = None


@dataclass(frozen=True)
class TurnStop:
    pass


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class WireError:
    """A frame that could not be turned into a usable event.

    ``kind`` is ``"decode"`` for local framing/JSON problems and ``"api"`` when
    the provider itself reported an error inside the stream.
    """

    message: str
    kind: str = "decode"
    error_type: str | None = None

    @property
    def is_fatal(self) -> bool:
        return self.kind == "api"


WireEvent = Union[
    StreamStart,
    BlockStart,
    BlockDelta,
    BlockStop,
    TurnDelta,
    TurnStop,
    Ping,
    WireError,
]


# ---------------------------------------------------------------------------
# Content blocks and messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    index: int
    text: str
    kind: BlockKind = field(default=BlockKind.TEXT, init=False)


@dataclass(frozen=True)
class ToolUseBlock:
    index: int
    id: str
    name: str
    arguments: str
    kind: BlockKind = field(default=BlockKind.TOOL_USE, init=False)

    def parsed_arguments(self) -> dict[str, Any]:
        """Return the decoded arguments, or an empty dict if they do not parse."""
        if not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}


@dataclass(frozen=True)
class ThinkingBlock:
    index: int
    text: str
    signature: str | None = None
    # Opaque payload of a provider-redacted thinking block; replayed as is.
    redacted_data: str | None = None
    kind: BlockKind = field(default=BlockKind.THINKING, init=False)


@dataclass(frozen=True)
class ImageBlock:
    index: int
    ref: str
    kind: BlockKind = field(default=BlockKind.IMAGE, init=False)


ContentBlock = Union[TextBlock, ToolUseBlock, ThinkingBlock, ImageBlock]


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation reconstructed from the stream.

    ``error`` is set when the call cannot be dispatched: its argument buffer is
    not valid JSON, or its block never received a stop event.
    """

    id: str
    name: str
    arguments: str
    index: int = 0
    error: str | None = None
    complete: bool = True

    @property
    def is_dispatchable(self) -> bool:
        return self.complete and self.error is None

    def parsed_arguments(self) -> dict[str, Any]:
        if not self.arguments.strip():
            return {}
        parsed = json.loads(self.arguments)
        if not isinstance(parsed, dict):
            raise ValueError("tool arguments must be a JSON object")
        return parsed


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    content: str
    is_error: bool = False

    @classmethod
    def failure(cls, call_id: str, error: str) -> "ToolResult":
        return cls(call_id=call_id, content=f"Error: {error}", is_error=True)


@dataclass(frozen=True)
class Message:
    role: Role
    content: tuple[ContentBlock, ...] = ()
    stop_reason: StopReason | None = None
    tool_call_id: str | None = None
    is_error: bool = False
    id: str | None = None
    model: str | None = None

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role=Role.USER, content=(TextBlock(index=0, text=text),))

    @classmethod
    def assistant(cls, text: str, stop_reason: StopReason | None = None) -> "Message":
        return cls(
            role=Role.ASSISTANT,
            content=(TextBlock(index=0, text=text),),
            stop_reason=stop_reason,
        )

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "Message":
        return cls(
            role=Role.TOOL,
            content=(TextBlock(index=0, text=result.content),),
            tool_call_id=result.call_id,
            is_error=result.is_error,
        )

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def has_tool_use(self) -> bool:
        return any(isinstance(b, ToolUseBlock) for b in self.content)

    def with_content(self, content: tuple[ContentBlock, ...]) -> "Message":
        return replace(self, content=content)


@dataclass(frozen=True)
class AggregationIssue:
    """A recoverable problem tied to one block index of a turn."""

    index: int | None
    message: str


@dataclass(frozen=True)
class AggregatedTurn:
    message: Message
    tool_calls: tuple[ToolCall, ...] = ()
    issues: tuple[AggregationIssue, ...] = ()
    truncated: bool = False
    usage: dict[str, Any] | None = None

    @property
    def dispatchable_calls(self) -> list[ToolCall]:
        return [c for c in self.tool_calls if c.is_dispatchable]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolChoiceMode(str, enum.Enum):
    AUTO = "auto"
    REQUIRED = "required"
    NONE = "none"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolChoice:
    """Provider-neutral tool choice; each contract maps it to its own field."""

    mode: ToolChoiceMode = ToolChoiceMode.AUTO
    name: str | None = None

    def __post_init__(self) -> None:
        if self.mode is ToolChoiceMode.TOOL and not self.name:
            raise ValueError("tool choice of a specific tool needs a tool name")

    @classmethod
    def tool(cls, name: str) -> "ToolChoice":
        return cls(ToolChoiceMode.TOOL, name)

    @classmethod
    def coerce(cls, value: "ToolChoice | str | None") -> "ToolChoice | None":
        """Accept a ToolChoice, a mode name (``"any"`` means required) or None."""
        if value is None or isinstance(value, ToolChoice):
            return value
        key = str(value).strip().lower()
        if key == "any":
            key = ToolChoiceMode.REQUIRED.value
        try:
            mode = ToolChoiceMode(key)
        except ValueError:
            raise ValueError(f"Unknown tool choice: {value!r}") from None
        return cls(mode)


@dataclass(frozen=True)
class LoopOutcome:
    """Result handed back to the host when the loop stops.

    ``messages`` holds only what this run appended; callers rebuild the full
    context by concatenating it with the conversation they passed in.
    """

    state: AgentLoopState
    messages: tuple[Message, ...] = ()
    turns: int = 0
    reason: str | None = None
    circuit_broken: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is AgentLoopState.COMPLETED
