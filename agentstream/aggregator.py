"""Delta aggregators that fold canonical wire events into one assistant turn.

Two provider shapes are supported:

* block lifecycle (Anthropic): every block is opened with ``BlockStart``,
  extended with ``BlockDelta`` and closed with ``BlockStop``;
* indexed delta (OpenAI): fragments keyed by index arrive without explicit
  start/stop frames and a finish reason closes everything at once.

An aggregator is created per turn, owns its slot arena and hands the finalized
turn over by value through ``finalize``.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from .config import LoopSettings
from .errors import BufferLimitExceeded
from .models import (
    AggregatedTurn,
    AggregationIssue,
    BlockDelta,
    BlockKind,
    BlockStart,
    BlockStop,
    ContentBlock,
    DeltaPayload,
    ImageBlock,
    Message,
    Ping,
    Role,
    SignatureDelta,
    StopReason,
    StreamStart,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ThinkingDelta,
    ToolArgsDelta,
    ToolCall,
    ToolCallDelta,
    ToolUseBlock,
    TurnDelta,
    TurnStop,
    WireError,
    WireEvent,
)
from .observer import LoopObserver, NullObserver
from .provider_capabilities import BLOCK_LIFECYCLE, INDEXED_DELTA

INCOMPLETE_CALL_ERROR = "stream ended before tool call was complete"


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _payload_kind(payload: DeltaPayload) -> BlockKind:
    if isinstance(payload, TextDelta):
        return BlockKind.TEXT
    if isinstance(payload, (ToolArgsDelta, ToolCallDelta)):
        return BlockKind.TOOL_USE
    return BlockKind.THINKING


@dataclass
class _BlockSlot:
    index: int
    kind: BlockKind
    text: list[str] = field(default_factory=list)
    text_size: int = 0
    arguments: list[str] = field(default_factory=list)
    arguments_size: int = 0
    initial_input: Any = None
    id: str = ""
    name: str = ""
    signature: str = ""
    redacted_data: str = ""
    ref: str = ""
    stopped: bool = False


class DeltaAggregator:
    """Shared slot arena and finalization for both provider shapes."""

    shape = ""

    def __init__(
        self,
        settings: LoopSettings | None = None,
        observer: LoopObserver | None = None,
    ) -> None:
        settings = settings or LoopSettings()
        self._max_buffer = settings.max_buffer_chars
        self._max_tool_calls = settings.max_tool_calls_per_turn
        self._observer = observer or NullObserver()
        self._slots: dict[int, _BlockSlot] = {}
        self._ignored: set[int] = set()
        self._issues: list[AggregationIssue] = []
        self._tool_slots = 0
        self._message_id: str | None = None
        self._model: str | None = None
        self._stop_reason: StopReason | None = None
        self._stop_sequence: str | None = None
        self._usage: dict[str, Any] | None = None
        self._result: AggregatedTurn | None = None

    @property
    def stop_reason(self) -> StopReason | None:
        return self._stop_reason

    @property
    def issues(self) -> tuple[AggregationIssue, ...]:
        return tuple(self._issues)

    def feed(self, event: WireEvent) -> None:
        if self._result is not None:
            raise RuntimeError("aggregator already finalized")
        if isinstance(event, BlockDelta):
            self._on_block_delta(event)
        elif isinstance(event, BlockStart):
            self._on_block_start(event)
        elif isinstance(event, BlockStop):
            self._on_block_stop(event)
        elif isinstance(event, TurnDelta):
            self._on_turn_delta(event)
        elif isinstance(event, StreamStart):
            self._message_id = event.message_id or self._message_id
            self._model = event.model or self._model
        elif isinstance(event, (TurnStop, Ping, WireError)):
            # Stream control and decode errors are handled by the loop.
            pass

    # -- shape hooks ---------------------------------------------------------

    def _on_block_start(self, event: BlockStart) -> None:
        raise NotImplementedError

    def _on_block_delta(self, event: BlockDelta) -> None:
        raise NotImplementedError

    def _on_block_stop(self, event: BlockStop) -> None:
        raise NotImplementedError

    def _on_turn_delta(self, event: TurnDelta) -> None:
        if event.stop_reason is not None:
            self._stop_reason = event.stop_reason
        if event.stop_sequence:
            self._stop_sequence = event.stop_sequence
        if event.usage:
            self._usage = {**(self._usage or {}), **event.usage}

    def _freeze_all(self) -> None:
        for slot in self._slots.values():
            slot.stopped = True

    # -- slot helpers --------------------------------------------------------

    def _issue(self, index: int | None, message: str) -> None:
        issue = AggregationIssue(index=index, message=message)
        self._issues.append(issue)
        self._observer.aggregation_issue(issue)

    def _open_slot(self, index: int, kind: BlockKind) -> _BlockSlot | None:
        if kind is BlockKind.TOOL_USE:
            if self._tool_slots >= self._max_tool_calls:
                self._ignored.add(index)
                self._issue(
                    index,
                    f"tool call limit of {self._max_tool_calls} reached; ignoring block",
                )
                return None
            self._tool_slots += 1
        slot = _BlockSlot(index=index, kind=kind)
        self._slots[index] = slot
        return slot

    def _apply_initial(self, slot: _BlockSlot, initial: dict[str, Any]) -> None:
        if initial.get("text"):
            self._append_text(slot, str(initial["text"]))
        if initial.get("id") and not slot.id:
            slot.id = str(initial["id"])
        if initial.get("name") and not slot.name:
            slot.name = str(initial["name"])
        if initial.get("input"):
            slot.initial_input = initial["input"]
        if initial.get("signature"):
            slot.signature = str(initial["signature"])
        if initial.get("redacted_data"):
            slot.redacted_data = str(initial["redacted_data"])
        if initial.get("ref"):
            slot.ref = str(initial["ref"])

    def _append_text(self, slot: _BlockSlot, text: str) -> None:
        if not text:
            return
        slot.text_size += len(text)
        if slot.text_size > self._max_buffer:
            raise BufferLimitExceeded(slot.index, self._max_buffer)
        slot.text.append(text)

    def _append_arguments(self, slot: _BlockSlot, fragment: str) -> None:
        if not fragment:
            return
        slot.arguments_size += len(fragment)
        if slot.arguments_size > self._max_buffer:
            raise BufferLimitExceeded(slot.index, self._max_buffer)
        slot.arguments.append(fragment)

    def _apply_delta(self, slot: _BlockSlot, payload: DeltaPayload) -> None:
        kind = _payload_kind(payload)
        if kind is not slot.kind:
            self._issue(
                slot.index,
                f"{type(payload).__name__} does not apply to a {slot.kind.value} block",
            )
            return
        if isinstance(payload, TextDelta):
            self._append_text(slot, payload.text)
            self._observer.text_delta(slot.index, payload.text)
        elif isinstance(payload, ThinkingDelta):
            self._append_text(slot, payload.text)
            self._observer.thinking_delta(slot.index, payload.text)
        elif isinstance(payload, SignatureDelta):
            slot.signature = payload.signature
        elif isinstance(payload, ToolArgsDelta):
            self._append_arguments(slot, payload.partial_json)
        elif isinstance(payload, ToolCallDelta):
            if payload.id and not slot.id:
                slot.id = payload.id
            if payload.name:
                slot.name += payload.name
            if payload.arguments:
                self._append_arguments(slot, payload.arguments)

    # -- finalization --------------------------------------------------------

    def finalize(self, complete: bool = True) -> AggregatedTurn:
        """Build the turn from everything fed so far.

        ``complete`` is False when the stream ended without a terminal frame
        (EOF or a dropped connection). The result is cached; later calls
        return the same object.
        """
        if self._result is not None:
            return self._result
        self._before_finalize(complete)

        blocks: list[ContentBlock] = []
        calls: list[ToolCall] = []
        seen_ids: set[str] = set()
        for index in sorted(self._slots):
            slot = self._slots[index]
            text = "".join(slot.text)
            if slot.kind is BlockKind.TEXT:
                if text:
                    blocks.append(TextBlock(index=index, text=text))
            elif slot.kind is BlockKind.THINKING:
                if text or slot.signature or slot.redacted_data:
                    blocks.append(ThinkingBlock(
                        index=index,
                        text=text,
                        signature=slot.signature or None,
                        redacted_data=slot.redacted_data or None,
                    ))
            elif slot.kind is BlockKind.IMAGE:
                blocks.append(ImageBlock(index=index, ref=slot.ref))
            else:
                call = self._finalize_tool_slot(slot, seen_ids)
                if call is not None:
                    blocks.append(ToolUseBlock(index=index, id=call.id, name=call.name, arguments=call.arguments))
                    calls.append(call)

        open_slots = any(not slot.stopped for slot in self._slots.values())
        message = Message(
            role=Role.ASSISTANT,
            content=tuple(blocks),
            stop_reason=self._stop_reason,
            id=self._message_id,
            model=self._model,
        )
        self._result = AggregatedTurn(
            message=message,
            tool_calls=tuple(calls),
            issues=tuple(self._issues),
            truncated=self._stop_reason is StopReason.MAX_TOKENS or open_slots,
            usage=self._usage,
        )
        return self._result

    def _before_finalize(self, complete: bool) -> None:
        pass

    def _finalize_tool_slot(self, slot: _BlockSlot, seen_ids: set[str]) -> ToolCall | None:
        if not slot.name:
            self._issue(slot.index, "tool call without a name dropped")
            return None

        call_id = slot.id or _new_call_id()
        if call_id in seen_ids:
            replacement = _new_call_id()
            self._issue(slot.index, f"duplicate tool call id {call_id!r} replaced with {replacement!r}")
            call_id = replacement
        seen_ids.add(call_id)

        arguments = "".join(slot.arguments)
        if not arguments.strip() and slot.initial_input:
            arguments = json.dumps(slot.initial_input, ensure_ascii=False)
        if not arguments.strip():
            arguments = "{}"

        error: str | None = None
        if not slot.stopped:
            error = INCOMPLETE_CALL_ERROR
        else:
            try:
                parsed = json.loads(arguments)
            except json.JSONDecodeError as exc:
                error = f"invalid JSON arguments: {exc.msg} at position {exc.pos}"
            else:
                if not isinstance(parsed, dict):
                    error = "tool arguments must be a JSON object"
        if error:
            self._issue(slot.index, f"tool call {slot.name!r}: {error}")

        return ToolCall(
            id=call_id,
            name=slot.name,
            arguments=arguments,
            index=slot.index,
            error=error,
            complete=slot.stopped,
        )


class BlockLifecycleAggregator(DeltaAggregator):
    """Aggregator for providers with explicit block start/delta/stop frames."""

    shape = BLOCK_LIFECYCLE

    def _on_block_start(self, event: BlockStart) -> None:
        if event.index in self._slots or event.index in self._ignored:
            self._issue(event.index, "duplicate block start rejected")
            return
        slot = self._open_slot(event.index, event.kind)
        if slot is not None:
            self._apply_initial(slot, event.initial)

    def _on_block_delta(self, event: BlockDelta) -> None:
        if event.index in self._ignored:
            return
        slot = self._slots.get(event.index)
        if slot is None:
            slot = self._open_slot(event.index, _payload_kind(event.payload))
            if slot is None:
                return
        if slot.stopped:
            self._issue(event.index, "delta after block stop rejected")
            return
        self._apply_delta(slot, event.payload)

    def _on_block_stop(self, event: BlockStop) -> None:
        if event.index in self._ignored:
            return
        slot = self._slots.get(event.index)
        if slot is None:
            self._issue(event.index, "stop for unknown block index")
            return
        if slot.stopped:
            self._issue(event.index, "duplicate block stop")
            return
        slot.stopped = True


class IndexedDeltaAggregator(DeltaAggregator):
    """Aggregator for providers that stream index-keyed fragments.

    Fragments for the same index are coalesced; the first finish reason
    freezes every pending slot.
    """

    shape = INDEXED_DELTA

    def __init__(
        self,
        settings: LoopSettings | None = None,
        observer: LoopObserver | None = None,
    ) -> None:
        super().__init__(settings, observer)
        self._frozen = False

    def _on_block_start(self, event: BlockStart) -> None:
        if event.index in self._ignored:
            return
        slot = self._slots.get(event.index)
        if slot is None:
            slot = self._open_slot(event.index, event.kind)
            if slot is None:
                return
        elif slot.kind is not event.kind:
            self._issue(event.index, f"block start kind {event.kind.value} conflicts with {slot.kind.value}")
            return
        self._apply_initial(slot, event.initial)

    def _on_block_delta(self, event: BlockDelta) -> None:
        if event.index in self._ignored:
            return
        if self._frozen:
            self._issue(event.index, "delta after finish reason rejected")
            return
        slot = self._slots.get(event.index)
        if slot is None:
            slot = self._open_slot(event.index, _payload_kind(event.payload))
            if slot is None:
                return
        self._apply_delta(slot, event.payload)

    def _on_block_stop(self, event: BlockStop) -> None:
        slot = self._slots.get(event.index)
        if slot is None:
            if event.index not in self._ignored:
                self._issue(event.index, "stop for unknown block index")
            return
        slot.stopped = True

    def _on_turn_delta(self, event: TurnDelta) -> None:
        super()._on_turn_delta(event)
        if event.stop_reason is not None:
            self._frozen = True
            self._freeze_all()

    def _before_finalize(self, complete: bool) -> None:
        if complete:
            self._freeze_all()


def create_aggregator(
    shape: str,
    settings: LoopSettings | None = None,
    observer: LoopObserver | None = None,
) -> DeltaAggregator:
    if shape == BLOCK_LIFECYCLE:
        return BlockLifecycleAggregator(settings, observer)
    if shape == INDEXED_DELTA:
        return IndexedDeltaAggregator(settings, observer)
    raise ValueError(f"Unknown delta shape: {shape!r}")
