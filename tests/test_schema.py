"""Tests for TelemetryEvent normalization and TokenUsage."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from sk_langfuse.schema import SubEvent, TelemetryEvent, TokenUsage


def _event(**kwargs) -> TelemetryEvent:
    defaults = {"name": "op", "span_id": "s1", "trace_id": "t1"}
    defaults.update(kwargs)
    return TelemetryEvent(**defaults)


# ── TelemetryEvent ───────────────────────────────────────


def test_end_time_is_start_plus_duration():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    event = _event(start_time=start, duration=timedelta(milliseconds=250))
    assert event.end_time == start + timedelta(milliseconds=250)
    assert event.duration_ms == 250


def test_negative_duration_clamped():
    event = _event(duration=timedelta(seconds=-5))
    assert event.duration == timedelta(0)
    assert event.start_time <= event.end_time


def test_naive_start_time_treated_as_utc():
    event = _event(start_time=datetime(2024, 1, 1, 8, 30))
    assert event.start_time.tzinfo is not None
    assert event.start_time.utcoffset() == timedelta(0)


def test_tags_from_pairs_last_write_wins():
    event = _event(tags=[("a", "1"), ("b", "2"), ("a", "3")])
    assert event.tags == {"a": "3", "b": "2"}
    assert list(event.tags) == ["a", "b"]


def test_tag_values_stringified():
    event = _event(tags={"count": 3, "flag": True, "none": None})
    assert event.tags == {"count": "3", "flag": "True", "none": ""}


def test_status_normalized():
    assert _event(status="Error").status == "error"
    with pytest.raises(ValidationError):
        _event(status="exploded")


def test_event_is_frozen():
    event = _event()
    with pytest.raises(ValidationError):
        event.name = "other"


def test_is_root():
    assert _event().is_root
    assert not _event(parent_id="p1").is_root


def test_sub_event_tags_normalized():
    sub = SubEvent(name="gen_ai.content.prompt", tags=[("gen_ai.prompt", 12)])
    assert sub.tags == {"gen_ai.prompt": "12"}


# ── TokenUsage ───────────────────────────────────────────


def test_token_usage_partial_kept():
    usage = TokenUsage(total_tokens=10)
    assert usage.prompt_tokens is None
    assert usage.completion_tokens is None
    assert usage.model_dump(by_alias=True, exclude_none=True) == {"totalTokens": 10}


def test_token_usage_from_attribute_object():
    raw = SimpleNamespace(input_token_count=12, output_token_count=30, total_token_count=42)
    usage = TokenUsage.from_metadata(raw)
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (12, 30, 42)


def test_token_usage_from_mapping():
    usage = TokenUsage.from_metadata({"prompt_tokens": "7", "completion_tokens": "oops"})
    assert usage.prompt_tokens == 7
    assert usage.completion_tokens is None
    assert usage.total_tokens is None


def test_token_usage_from_none():
    assert TokenUsage.from_metadata(None) is None


def test_token_usage_passthrough():
    usage = TokenUsage(prompt_tokens=1)
    assert TokenUsage.from_metadata(usage) is usage
