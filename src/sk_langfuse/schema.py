"""Telemetry event schema consumed by the exporters."""

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ActivityStatus = Literal["ok", "error", "unset"]


def _stringify_tags(value: Any) -> dict[str, str]:
    """Normalize a mapping or a sequence of (key, value) pairs to ``dict[str, str]``.

    Later duplicates of a key overwrite earlier ones.
    """
    if value is None:
        return {}
    items = value.items() if isinstance(value, Mapping) else value
    tags: dict[str, str] = {}
    for key, raw in items:
        tags[str(key)] = "" if raw is None else str(raw)
    return tags


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


class SubEvent(BaseModel):
    """A timestamped event recorded inside an activity."""

    model_config = ConfigDict(frozen=True)

    name: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tags: dict[str, str] = {}

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> dict[str, str]:
        return _stringify_tags(value)

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class TelemetryEvent(BaseModel):
    """A finished (or just started) unit of work emitted by the framework."""

    model_config = ConfigDict(frozen=True)

    name: str
    span_id: str
    trace_id: str
    parent_id: Optional[str] = None
    source: str = ""
    kind: str = "internal"

    start_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration: timedelta = timedelta(0)
    status: ActivityStatus = "unset"

    tags: dict[str, str] = {}
    events: tuple[SubEvent, ...] = ()

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> dict[str, str]:
        return _stringify_tags(value)

    @field_validator("status", mode="before")
    @classmethod
    def _lower_status(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("start_time")
    @classmethod
    def _utc_start(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("duration")
    @classmethod
    def _non_negative(cls, value: timedelta) -> timedelta:
        return value if value >= timedelta(0) else timedelta(0)

    @property
    def end_time(self) -> datetime:
        return self.start_time + self.duration

    @property
    def duration_ms(self) -> float:
        return self.duration.total_seconds() * 1000

    @property
    def is_root(self) -> bool:
        return not self.parent_id


# Compatibility lookup names for token counts reported by framework result metadata
_USAGE_FIELD_NAMES = {
    "prompt_tokens": (
        "input_token_count", "InputTokenCount", "prompt_tokens", "input_tokens",
    ),
    "completion_tokens": (
        "output_token_count", "OutputTokenCount", "completion_tokens", "output_tokens",
    ),
    "total_tokens": ("total_token_count", "TotalTokenCount", "total_tokens"),
}


class TokenUsage(BaseModel):
    """Token counts for a generation. Each counter is independently optional."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return (
            self.prompt_tokens is None
            and self.completion_tokens is None
            and self.total_tokens is None
        )

    @classmethod
    def from_metadata(cls, usage: Any) -> Optional["TokenUsage"]:
        """Best-effort read of a usage object of unknown shape.

        Accepts a ``TokenUsage``, a mapping, or any object exposing
        ``input_token_count``-style attributes. Returns None for None.
        """
        if usage is None:
            return None
        if isinstance(usage, TokenUsage):
            return usage
        values: dict[str, Optional[int]] = {}
        for field, names in _USAGE_FIELD_NAMES.items():
            for name in names:
                if isinstance(usage, Mapping):
                    raw = usage.get(name)
                else:
                    raw = getattr(usage, name, None)
                parsed = parse_int(raw)
                if parsed is not None:
                    values[field] = parsed
                    break
        return cls(**values)
