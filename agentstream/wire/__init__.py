"""Stream framing: SSE lines to canonical wire events."""

from __future__ import annotations

from .decoder import DONE_SENTINEL, WireEventDecoder, aiter_wire_events

__all__ = ["DONE_SENTINEL", "WireEventDecoder", "aiter_wire_events"]
