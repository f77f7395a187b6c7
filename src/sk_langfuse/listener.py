"""Listener-style exporter driven by activity start/stop callbacks."""

import atexit
import logging
import queue
import threading
from typing import Any, Optional

from .client import LangfuseClient
from .config import LangfuseConfig
from .exporter import build_observation
from .mapper import TraceIdMapper
from .observations import EventCreate
from .schema import TelemetryEvent

logger = logging.getLogger("sk_langfuse.listener")

TRACE_NAME_PREFIX = "SK Activity: "
POLL_INTERVAL_SECONDS = 0.5


class _FlushMarker:
    __slots__ = ("done",)

    def __init__(self):
        self.done = threading.Event()


def _activity_key(event: TelemetryEvent) -> str:
    return f"activity:{event.span_id}"


class LangfuseEventHandler:
    """Turns activity start/stop callbacks into Langfuse events and observations.

    Callbacks only enqueue work, so they never block the framework thread.
    A single background worker drains the bounded queue in order and logs
    any handler failure. ``flush()`` waits for everything queued so far and
    ``shutdown()`` drains the queue before stopping.

    Mapping:
        start -> trace resolved per framework trace, activity bound to it,
                 zero-duration "Activity Started" event emitted
        stop  -> activity binding popped, span or generation emitted; the
                 trace entry is swept when the root activity stops
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
        self._queue: queue.Queue = queue.Queue(maxsize=self.config.max_queue_size)
        self._closed = False
        self._shutdown = threading.Event()
        self._worker = threading.Thread(
            target=self._run, name="sk-langfuse-listener", daemon=True
        )
        self._worker.start()
        atexit.register(self.shutdown)

    # ── Framework callbacks ──────────────────────────────

    def on_start(self, event: TelemetryEvent) -> None:
        self._enqueue(self._handle_start, event)

    def on_stop(self, event: TelemetryEvent) -> None:
        self._enqueue(self._handle_stop, event)

    def _enqueue(self, handler, event: TelemetryEvent) -> None:
        if self._closed or event is None:
            return
        if not self.config.matches_source(event.source):
            return
        try:
            self._queue.put_nowait((handler, event))
        except queue.Full:
            logger.warning(
                "Langfuse listener queue full, dropping activity %s", event.name
            )

    # ── Handlers (worker thread) ─────────────────────────

    def _handle_start(self, event: TelemetryEvent) -> None:
        trace_id = self.mapper.resolve_or_create(
            event.trace_id, f"{self.trace_name_prefix}{event.name}"
        )
        self.mapper.bind(_activity_key(event), trace_id)

        metadata: dict[str, Any] = {
            "activity_name": event.name,
            "activity_kind": event.kind,
            "activity_id": event.span_id,
        }
        for key, value in event.tags.items():
            metadata.setdefault(key, value)

        self.client.send(
            EventCreate(
                trace_id=trace_id,
                name=f"Activity Started: {event.name}",
                start_time=event.start_time,
                end_time=event.start_time,
                level="INFO",
                metadata=metadata,
            )
        )

    def _handle_stop(self, event: TelemetryEvent) -> None:
        # Popped before emitting so the binding never outlives the activity
        trace_id = self.mapper.pop(_activity_key(event))
        if event.is_root:
            self.mapper.forget(event.trace_id)
        if trace_id is None:
            logger.warning(
                "Could not find trace ID for activity %s (%s)", event.span_id, event.name
            )
            return
        self.client.send(build_observation(event, trace_id))

    # ── Worker ───────────────────────────────────────────

    def _run(self) -> None:
        while not self._shutdown.is_set():
            try:
                item = self._queue.get(timeout=POLL_INTERVAL_SECONDS)
            except queue.Empty:
                continue
            self._dispatch(item)

        # Drain remaining items on shutdown
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            self._dispatch(item)

    def _dispatch(self, item) -> None:
        try:
            if isinstance(item, _FlushMarker):
                item.done.set()
                return
            handler, event = item
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Error handling activity %s for %s",
                    "start" if handler == self._handle_start else "stop",
                    event.name,
                )
        finally:
            self._queue.task_done()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every callback queued before this call has been handled."""
        if not self._worker.is_alive():
            return self._queue.empty()
        marker = _FlushMarker()
        try:
            self._queue.put(marker, timeout=timeout)
        except queue.Full:
            return False
        return marker.done.wait(timeout)

    def shutdown(self, timeout: float = 10.0) -> None:
        """Unregister, drain pending work, stop the worker and release the client."""
        if self._closed:
            return
        self._closed = True
        self._shutdown.set()
        self._worker.join(timeout=timeout)
        self.mapper.clear()
        self.client.close()
        atexit.unregister(self.shutdown)
