"""sk-langfuse: Semantic Kernel telemetry export to Langfuse."""

from .client import LangfuseClient
from .config import LangfuseConfig
from .exceptions import LangfuseAPIError, MissingCredentialsError
from .exporter import ExportResult, LangfuseTraceExporter, build_observation
from .filters import LangfuseKernelFilter
from .listener import LangfuseEventHandler
from .mapper import TraceIdMapper
from .observations import (
    EventCreate,
    GenerationCreate,
    SpanCreate,
    TraceCreate,
    TraceUpdate,
)
from .otel import LangfuseSpanExporter, LangfuseSpanProcessor, event_from_span, instrument
from .schema import SubEvent, TelemetryEvent, TokenUsage
from ._version import __version__

__all__ = [
    "LangfuseClient",
    "LangfuseConfig",
    "LangfuseAPIError",
    "MissingCredentialsError",
    "ExportResult",
    "LangfuseTraceExporter",
    "build_observation",
    "LangfuseKernelFilter",
    "LangfuseEventHandler",
    "TraceIdMapper",
    "EventCreate",
    "GenerationCreate",
    "SpanCreate",
    "TraceCreate",
    "TraceUpdate",
    "SubEvent",
    "TelemetryEvent",
    "TokenUsage",
    "LangfuseSpanExporter",
    "LangfuseSpanProcessor",
    "event_from_span",
    "instrument",
    "__version__",
]
