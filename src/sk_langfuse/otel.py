"""OpenTelemetry bindings.

Semantic Kernel reports its work as OpenTelemetry spans. This module turns
those spans into :class:`TelemetryEvent` objects and plugs both exporter
flavors into a ``TracerProvider``:

- ``mode="batch"``: ``BatchSpanProcessor(LangfuseSpanExporter(...))``
- ``mode="listener"``: ``LangfuseSpanProcessor(...)`` with start/stop callbacks
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional, Sequence

from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from opentelemetry.trace import StatusCode, format_span_id, format_trace_id

from .client import LangfuseClient
from .config import LangfuseConfig
from .exporter import ExportResult, LangfuseTraceExporter
from .listener import LangfuseEventHandler
from .schema import SubEvent, TelemetryEvent

logger = logging.getLogger("sk_langfuse.otel")

_STATUS = {
    StatusCode.OK: "ok",
    StatusCode.ERROR: "error",
    StatusCode.UNSET: "unset",
}


def _from_ns(ns: Optional[int]) -> datetime:
    if not ns:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(ns / 1e9, tz=timezone.utc)


def _attribute_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _tags(attributes) -> dict[str, str]:
    if not attributes:
        return {}
    return {key: _attribute_value(value) for key, value in attributes.items()}


def event_from_span(span: ReadableSpan) -> TelemetryEvent:
    """Convert an SDK span (started or finished) into a ``TelemetryEvent``."""
    ctx = span.get_span_context()
    parent = span.parent
    scope = span.instrumentation_scope

    duration = timedelta(0)
    if span.start_time and span.end_time:
        duration = timedelta(microseconds=(span.end_time - span.start_time) / 1000)

    return TelemetryEvent(
        name=span.name,
        span_id=format_span_id(ctx.span_id),
        trace_id=format_trace_id(ctx.trace_id),
        parent_id=format_span_id(parent.span_id) if parent is not None else None,
        source=scope.name if scope is not None else "",
        kind=span.kind.name.lower(),
        start_time=_from_ns(span.start_time),
        duration=duration,
        status=_STATUS.get(span.status.status_code, "unset"),
        tags=_tags(span.attributes),
        events=tuple(
            SubEvent(name=e.name, timestamp=_from_ns(e.timestamp), tags=_tags(e.attributes))
            for e in span.events
        ),
    )


class LangfuseSpanExporter(SpanExporter):
    """``SpanExporter`` feeding finished spans to :class:`LangfuseTraceExporter`."""

    def __init__(self, exporter: LangfuseTraceExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        try:
            events = [event_from_span(s) for s in spans]
        except Exception:
            logger.exception("Failed to convert spans for Langfuse export")
            return SpanExportResult.FAILURE
        result = self.exporter.export(events)
        if result is ExportResult.SUCCESS:
            return SpanExportResult.SUCCESS
        return SpanExportResult.FAILURE

    def shutdown(self) -> None:
        self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        # export() is synchronous; nothing is buffered here
        return True


class LangfuseSpanProcessor(SpanProcessor):
    """``SpanProcessor`` forwarding span start/end to :class:`LangfuseEventHandler`."""

    def __init__(self, handler: LangfuseEventHandler):
        self.handler = handler

    def on_start(self, span: Span, parent_context: Optional[Context] = None) -> None:
        try:
            self.handler.on_start(event_from_span(span))
        except Exception:
            logger.exception("Failed to queue span start %s", span.name)

    def on_end(self, span: ReadableSpan) -> None:
        try:
            self.handler.on_stop(event_from_span(span))
        except Exception:
            logger.exception("Failed to queue span end %s", span.name)

    def shutdown(self) -> None:
        self.handler.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.handler.flush(timeout_millis / 1000)


def instrument(
    tracer_provider: TracerProvider,
    config: Optional[LangfuseConfig] = None,
    mode: Literal["batch", "listener"] = "batch",
    client: Optional[LangfuseClient] = None,
) -> SpanProcessor:
    """Attach a Langfuse pipeline to *tracer_provider* and return its processor.

    Without a config or client, credentials come from ``LANGFUSE_*``
    environment variables.
    """
    if mode not in ("batch", "listener"):
        raise ValueError(f"Unknown Langfuse export mode: {mode!r}")
    if client is None:
        client = LangfuseClient(config=config or LangfuseConfig.from_env())

    if mode == "batch":
        processor: SpanProcessor = BatchSpanProcessor(
            LangfuseSpanExporter(LangfuseTraceExporter(client, config=config))
        )
    else:
        processor = LangfuseSpanProcessor(LangfuseEventHandler(client, config=config))

    tracer_provider.add_span_processor(processor)
    logger.debug("Langfuse %s pipeline attached to tracer provider", mode)
    return processor
