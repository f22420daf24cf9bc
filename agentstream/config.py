"""Loop settings and their environment loader."""

from __future__ import annotations

import enum
import logging
import os
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger("agentstream")

ENV_PREFIX = "AGENTSTREAM_"


class IncompleteToolPolicy(str, enum.Enum):
    """What to do when a turn asks for tools but not every call can be answered."""

    COMPLETE = "complete"
    FAIL = "fail"
    PROCEED = "proceed"


class LoopSettings(BaseModel):
    """Limits and policies for one agent loop run."""

    model_config = ConfigDict(frozen=True)

    max_turns: int = Field(default=10, ge=1, description="Maximum assistant turns per run.")
    per_call_timeout: float | None = Field(
        default=60.0,
        description="Seconds a single tool call may run. None disables the limit.",
    )
    dispatch_timeout: float | None = Field(
        default=300.0,
        description="Seconds the whole tool fan-out of a turn may run.",
    )
    max_concurrency: int = Field(default=4, ge=1)
    max_buffer_chars: int = Field(
        default=2_000_000,
        ge=1,
        description="Upper bound for any single text, thinking or argument buffer.",
    )
    max_tool_calls_per_turn: int = Field(default=64, ge=1)
    max_consecutive_decode_errors: int = Field(default=8, ge=1)
    incomplete_tool_policy: IncompleteToolPolicy = IncompleteToolPolicy.COMPLETE

    @field_validator("per_call_timeout", "dispatch_timeout")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value


def _env_value(name: str, parse: Callable[[str], Any], default: Any) -> Any:
    raw = (os.getenv(ENV_PREFIX + name, "") or "").strip()
    if not raw:
        return default
    try:
        return parse(raw)
    except ValueError:
        logger.warning(
            "Invalid %s%s=%r, defaulting to %r",
            ENV_PREFIX,
            name,
            raw,
            default,
        )
        return default


def _parse_timeout(raw: str) -> float | None:
    if raw.lower() in ("none", "off", "0"):
        return None
    return float(raw)


def load_settings_from_env(**overrides: Any) -> LoopSettings:
    """Build ``LoopSettings`` from ``AGENTSTREAM_*`` environment variables.

    Invalid values are logged and replaced with the defaults; explicit
    ``overrides`` win over the environment.
    """
    defaults = LoopSettings()
    values: dict[str, Any] = {
        "max_turns": _env_value("MAX_TURNS", int, defaults.max_turns),
        "per_call_timeout": _env_value("TOOL_TIMEOUT", _parse_timeout, defaults.per_call_timeout),
        "dispatch_timeout": _env_value(
            "DISPATCH_TIMEOUT", _parse_timeout, defaults.dispatch_timeout
        ),
        "max_concurrency": _env_value("MAX_CONCURRENCY", int, defaults.max_concurrency),
        "max_buffer_chars": _env_value("MAX_BUFFER_CHARS", int, defaults.max_buffer_chars),
        "max_tool_calls_per_turn": _env_value(
            "MAX_TOOL_CALLS", int, defaults.max_tool_calls_per_turn
        ),
        "max_consecutive_decode_errors": _env_value(
            "MAX_DECODE_ERRORS", int, defaults.max_consecutive_decode_errors
        ),
        "incomplete_tool_policy": _env_value(
            "INCOMPLETE_TOOL_POLICY",
            lambda raw: IncompleteToolPolicy(raw.lower()),
            defaults.incomplete_tool_policy,
        ),
    }
    for key in ("max_turns", "max_concurrency", "max_buffer_chars",
                "max_tool_calls_per_turn", "max_consecutive_decode_errors"):
        if values[key] < 1:
            logger.warning(
                "%s=%d is below 1; using default %d",
                key,
                values[key],
                getattr(defaults, key),
            )
            values[key] = getattr(defaults, key)
    values.update(overrides)
    return LoopSettings(**values)
