"""Batch exporter: completed framework activities -> Langfuse observations."""

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Optional, Union

from .classifier import (
    classify,
    extract_input,
    extract_metadata,
    extract_model,
    extract_output,
    extract_prompt,
    extract_response,
    extract_token_usage,
)
from .client import LangfuseClient
from .config import LangfuseConfig
from .mapper import TraceIdMapper
from .observations import GenerationCreate, SpanCreate
from .schema import TelemetryEvent

logger = logging.getLogger("sk_langfuse.exporter")

TRACE_NAME_PREFIX = "SK: "


class ExportResult(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def build_observation(
    event: TelemetryEvent, trace_id: str
) -> Union[GenerationCreate, SpanCreate]:
    """Project a finished activity onto a generation or a span."""
    if classify(event) == "generation":
        return GenerationCreate(
            trace_id=trace_id,
            name=event.name,
            start_time=event.start_time,
            end_time=event.end_time,
            model=extract_model(event),
            input=extract_prompt(event),
            output=extract_response(event),
            metadata=extract_metadata(event, generation=True),
            usage=extract_token_usage(event),
        )
    return SpanCreate(
        trace_id=trace_id,
        name=event.name,
        input=extract_input(event),
        output=extract_output(event),
        metadata=extract_metadata(event),
        start_time=event.start_time,
        end_time=event.end_time,
    )


class LangfuseTraceExporter:
    """Exports batches of completed activities to Langfuse.

    Each event in a batch is handled independently on a thread pool. A
    failure on one event is logged and never stops the rest of the batch.

    Trace ids are mapped per framework trace. A trace's entry is swept once
    its root activity has been exported.
    """

    def __init__(
        self,
        client: LangfuseClient,
        config: Optional[LangfuseConfig] = None,
        mapper: Optional[TraceIdMapper] = None,
        trace_name_prefix: str = TRACE_NAME_PREFIX,
    ):
        self.client = client
        self.config = config or client.config
        self.mapper = mapper or TraceIdMapper(client.create_trace)
        self.trace_name_prefix = trace_name_prefix
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="sk-langfuse-export",
        )
        self._shutdown = False

    def export(self, events: Iterable[TelemetryEvent]) -> ExportResult:
        if self._shutdown:
            logger.warning("Exporter already shut down, dropping batch")
            return ExportResult.FAILURE

        try:
            batch = list(events)
            logger.debug("Exporting %d activities to Langfuse", len(batch))

            # Traces are named after their root activity when it is in the batch
            root_names = {e.trace_id: e.name for e in batch if e.is_root}
            trace_names = [root_names.get(e.trace_id, e.name) for e in batch]
            results = list(
                self._executor.map(self._process_event, batch, trace_names)
            )

            # Sweep only after the whole batch so siblings still share the trace
            for event in batch:
                if event.is_root and self.config.matches_source(event.source):
                    self.mapper.forget(event.trace_id)

            logger.info(
                "Exported %d of %d activities to Langfuse", sum(results), len(batch)
            )
            return ExportResult.SUCCESS
        except Exception:
            logger.exception("Failed to export activities to Langfuse")
            return ExportResult.FAILURE

    def _process_event(self, event: TelemetryEvent, trace_name: str) -> bool:
        if not self.config.matches_source(event.source):
            return False
        try:
            trace_id = self.mapper.resolve_or_create(
                event.trace_id, f"{self.trace_name_prefix}{trace_name}"
            )
            return self.client.send(build_observation(event, trace_id))
        except Exception:
            logger.warning(
                "Failed to process activity %s (%s)",
                event.name,
                event.span_id,
                exc_info=True,
            )
            return False

    def shutdown(self) -> None:
        """Stop accepting batches, clear the trace map and release the client."""
        if self._shutdown:
            return
        self._shutdown = True
        self._executor.shutdown(wait=True)
        self.mapper.clear()
        self.client.close()
