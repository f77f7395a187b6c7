"""Heuristics that turn framework telemetry into Langfuse observation fields.

Everything here is pure and total: missing or malformed data degrades to
defaults (empty string, ``"unknown"``, unset counters) and never raises.
"""

from typing import Any, Iterable, Literal, Optional

from .schema import TelemetryEvent, TokenUsage, parse_int

ObservationKind = Literal["generation", "span"]

GENERATION_NAME_KEYWORDS = ("chatcompletion", "textgeneration", "completion")
GENERATION_TAG_MARKERS = ("model", "llm")

OPERATION_NAME_KEY = "gen_ai.operation.name"
MODEL_KEY = "gen_ai.request.model"

PROMPT_EVENT = "gen_ai.content.prompt"
PROMPT_EVENT_TAG = "gen_ai.prompt"
COMPLETION_EVENT = "gen_ai.content.completion"
COMPLETION_EVENT_TAG = "gen_ai.completion"

PROMPT_TOKENS_KEY = "gen_ai.response.prompt_tokens"
COMPLETION_TOKENS_KEY = "gen_ai.response.completion_tokens"
TOTAL_TOKENS_KEY = "gen_ai.response.total_tokens"

_PROMPT_TOKEN_MARKERS = ("prompt_token", "input_token")
_COMPLETION_TOKEN_MARKERS = ("completion_token", "output_token")
_TOTAL_TOKEN_MARKERS = ("total_token",)

_INPUT_MARKERS = ("input", "prompt", "request")
_OUTPUT_MARKERS = ("output", "response", "completion", "result")
_PROMPT_MARKERS = ("prompt", "input")
_RESPONSE_MARKERS = ("response", "output", "completion")


def _contains_any(key: str, markers: Iterable[str]) -> bool:
    lowered = key.lower()
    return any(m in lowered for m in markers)


def is_input_tag(key: str) -> bool:
    return _contains_any(key, _INPUT_MARKERS)


def is_output_tag(key: str) -> bool:
    return _contains_any(key, _OUTPUT_MARKERS)


def is_token_tag(key: str) -> bool:
    return "token" in key.lower()


def is_model_tag(key: str) -> bool:
    return "model" in key.lower()


# ── Classification ───────────────────────────────────────


def is_generation(event: TelemetryEvent) -> bool:
    name = (event.name or "").lower()
    if any(k in name for k in GENERATION_NAME_KEYWORDS):
        return True
    return any(
        _contains_any(key, GENERATION_TAG_MARKERS) or key.lower() == OPERATION_NAME_KEY
        for key in event.tags
    )


def classify(event: TelemetryEvent) -> ObservationKind:
    """Decide whether *event* is a model call ("generation") or a generic "span"."""
    return "generation" if is_generation(event) else "span"


# ── Field extraction ─────────────────────────────────────


def extract_model(event: TelemetryEvent) -> str:
    """Reserved model key first, then any key containing "model"."""
    for key, value in event.tags.items():
        if key.lower() == MODEL_KEY and value:
            return value
    for key, value in event.tags.items():
        if is_model_tag(key) and value:
            return value
    return "unknown"


def _sub_event_value(event: TelemetryEvent, event_name: str, tag_key: str) -> Optional[str]:
    for sub in event.events:
        if sub.name.lower() != event_name:
            continue
        for key, value in sub.tags.items():
            if key.lower() == tag_key and value:
                return value
        # Only the first matching sub-event is consulted
        return None
    return None


def _first_tag(event: TelemetryEvent, markers: Iterable[str]) -> str:
    for key, value in event.tags.items():
        if is_token_tag(key):
            continue
        if _contains_any(key, markers):
            return value
    return ""


def extract_prompt(event: TelemetryEvent) -> str:
    structured = _sub_event_value(event, PROMPT_EVENT, PROMPT_EVENT_TAG)
    if structured:
        return structured
    return _first_tag(event, _PROMPT_MARKERS)


def extract_response(event: TelemetryEvent) -> str:
    structured = _sub_event_value(event, COMPLETION_EVENT, COMPLETION_EVENT_TAG)
    if structured:
        return structured
    return _first_tag(event, _RESPONSE_MARKERS)


def extract_token_usage(event: TelemetryEvent) -> TokenUsage:
    """Each counter is parsed on its own; unparseable or absent ones stay None."""
    prompt_tokens = None
    completion_tokens = None
    total_tokens = None

    for key, value in event.tags.items():
        lowered = key.lower()
        if lowered == PROMPT_TOKENS_KEY or _contains_any(lowered, _PROMPT_TOKEN_MARKERS):
            parsed = parse_int(value)
            if parsed is not None:
                prompt_tokens = parsed
        elif lowered == COMPLETION_TOKENS_KEY or _contains_any(lowered, _COMPLETION_TOKEN_MARKERS):
            parsed = parse_int(value)
            if parsed is not None:
                completion_tokens = parsed
        elif lowered == TOTAL_TOKENS_KEY or _contains_any(lowered, _TOTAL_TOKEN_MARKERS):
            parsed = parse_int(value)
            if parsed is not None:
                total_tokens = parsed

    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


# ── Bags ─────────────────────────────────────────────────


def extract_input(event: TelemetryEvent) -> dict[str, Any]:
    bag: dict[str, Any] = {
        "activity_name": event.name,
        "activity_id": event.span_id,
        "source": event.source,
    }
    for key, value in event.tags.items():
        if is_input_tag(key):
            bag.setdefault(key, value)
    return bag


def extract_output(event: TelemetryEvent) -> dict[str, Any]:
    bag: dict[str, Any] = {
        "status": event.status,
        "duration_ms": event.duration_ms,
    }
    for key, value in event.tags.items():
        if is_output_tag(key):
            bag.setdefault(key, value)
    return bag


def serialize_sub_events(event: TelemetryEvent) -> list[dict[str, Any]]:
    return [
        {
            "name": sub.name,
            "timestamp": sub.timestamp.isoformat(),
            "tags": dict(sub.tags),
        }
        for sub in event.events
    ]


def extract_metadata(event: TelemetryEvent, generation: bool = False) -> dict[str, Any]:
    """Identity, timing and status plus every tag not already carried elsewhere.

    For generations, prompt/response, model and token tags are excluded since
    they travel in dedicated fields. For spans, only input and output tags are.
    """
    metadata: dict[str, Any] = {
        "activity_id": event.span_id,
        "trace_id": event.trace_id,
        "parent_id": event.parent_id or "",
        "source": event.source,
        "kind": event.kind,
        "duration_ms": event.duration_ms,
        "status": event.status,
    }

    for key, value in event.tags.items():
        if is_input_tag(key) or is_output_tag(key):
            continue
        if generation and (is_model_tag(key) or is_token_tag(key)):
            continue
        metadata.setdefault(key, value)

    if event.events:
        metadata["events_count"] = len(event.events)
        metadata["events"] = serialize_sub_events(event)

    return metadata
