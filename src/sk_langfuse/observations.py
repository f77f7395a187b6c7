"""Langfuse observation payloads.

Each observation kind is its own model carrying only the fields that kind
needs. ``to_body()`` renders the JSON body for the kind's public endpoint and
``to_ingestion()`` renders the ``{type, body}`` envelope used by the batch
ingestion endpoint.
"""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

from .schema import TokenUsage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    path: ClassVar[str] = ""
    method: ClassVar[str] = "POST"

    def endpoint(self) -> str:
        return self.path

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"kind"}
        )


class _Observation(_Payload):
    """An observation that can also travel inside an ingestion batch."""

    def to_ingestion(self) -> dict[str, Any]:
        return {"type": self.kind, "body": self.to_body()}


class _TimedObservation(_Observation):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _ordered(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time precedes start_time")
        return self

    @field_serializer("start_time", "end_time")
    def _serialize_epoch(self, value: datetime) -> int:
        return to_epoch_ms(value)


class TraceCreate(_Observation):
    path: ClassVar[str] = "/api/public/traces"

    kind: Literal["trace-create"] = "trace-create"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    metadata: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class GenerationCreate(_TimedObservation):
    path: ClassVar[str] = "/api/public/generations"

    kind: Literal["generation-create"] = "generation-create"
    trace_id: str
    name: str
    model: str = "unknown"
    input: str = ""
    output: str = ""
    metadata: Optional[dict[str, Any]] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)


class SpanCreate(_TimedObservation):
    path: ClassVar[str] = "/api/public/spans"

    kind: Literal["span-create"] = "span-create"
    trace_id: str
    name: str
    input: Optional[Any] = None
    output: Optional[Any] = None
    metadata: Optional[dict[str, Any]] = None


class EventCreate(_TimedObservation):
    path: ClassVar[str] = "/api/public/events"

    kind: Literal["event-create"] = "event-create"
    trace_id: str
    name: str
    level: str = "INFO"
    metadata: Optional[dict[str, Any]] = None


class TraceUpdate(_Payload):
    """Partial update of an existing trace. Not part of batch ingestion."""

    method: ClassVar[str] = "PATCH"

    trace_id: str = Field(exclude=True)
    metadata: Optional[dict[str, Any]] = None
    output: Optional[Any] = None

    def endpoint(self) -> str:
        return f"/api/public/traces/{self.trace_id}"


Observation = Annotated[
    Union[TraceCreate, GenerationCreate, SpanCreate, EventCreate],
    Field(discriminator="kind"),
]


class IngestionBatch(_Payload):
    path: ClassVar[str] = "/api/public/ingestion"

    batch: list[Observation] = []

    def to_body(self) -> dict[str, Any]:
        return {"batch": [obs.to_ingestion() for obs in self.batch]}

