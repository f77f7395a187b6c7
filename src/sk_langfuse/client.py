"""HTTP client for the Langfuse public API."""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

import httpx

from .config import DEFAULT_ENDPOINT, LangfuseConfig
from .exceptions import LangfuseAPIError
from .observations import (
    EventCreate,
    GenerationCreate,
    IngestionBatch,
    SpanCreate,
    TraceCreate,
    TraceUpdate,
)
from .schema import TokenUsage
from ._version import __version__

logger = logging.getLogger("sk_langfuse.client")

Sendable = Union[
    TraceCreate, GenerationCreate, SpanCreate, EventCreate, TraceUpdate, IngestionBatch
]


def _require(**values: Optional[str]) -> None:
    for name, value in values.items():
        if not value:
            raise ValueError(f"{name} must be a non-empty string")


class LangfuseClient:
    """Sends traces, generations, spans and events to Langfuse.

    Every call is a single best-effort request. Transport failures are logged
    and swallowed unless ``throw_on_error`` is set, in which case they surface
    as :class:`LangfuseAPIError`.

    Usage:
        client = LangfuseClient(public_key="pk-lf-...", secret_key="sk-lf-...")
        trace_id = client.create_trace("SK: chat")
        client.create_span(trace_id, "prompt_render", input={"q": "hi"})

        # On app shutdown:
        client.close()
    """

    def __init__(
        self,
        public_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        throw_on_error: bool = False,
        release_client_on_dispose: bool = True,
        timeout: float = 10.0,
        config: Optional[LangfuseConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if config is None:
            config = LangfuseConfig(
                public_key=public_key or "",
                secret_key=secret_key or "",
                endpoint_url=endpoint_url or DEFAULT_ENDPOINT,
                throw_on_error=throw_on_error,
                release_client_on_dispose=release_client_on_dispose,
                timeout=timeout,
            )
        self.config = config
        self._http = httpx.Client(
            base_url=config.endpoint_url,
            auth=httpx.BasicAuth(config.public_key, config.secret_key),
            headers={"User-Agent": f"sk-langfuse/{__version__}"},
            timeout=config.timeout,
            transport=transport,
        )
        self._closed = False
        logger.debug("LangfuseClient initialized with endpoint: %s", config.endpoint_url)

    @classmethod
    def from_env(cls, **overrides) -> "LangfuseClient":
        """Create a client from ``LANGFUSE_*`` environment variables."""
        transport = overrides.pop("transport", None)
        return cls(config=LangfuseConfig.from_env(**overrides), transport=transport)

    # ── Low-level send ───────────────────────────────────

    def _request(self, method: str, path: str, body: dict[str, Any]) -> bool:
        """Issue one request. Returns True on a 2xx response."""
        try:
            response = self._http.request(method, path, json=body)
            response.raise_for_status()
            return True
        except httpx.HTTPError as exc:
            status = None
            detail = None
            if isinstance(exc, httpx.HTTPStatusError):
                status = exc.response.status_code
                detail = exc.response.text[:200]
            if self.config.throw_on_error:
                raise LangfuseAPIError(method, path, status, detail) from exc
            logger.warning(
                "Langfuse %s %s failed (%s): %s",
                method,
                path,
                status if status is not None else type(exc).__name__,
                detail or exc,
            )
            return False

    def send(self, observation: Sendable) -> bool:
        """Send any observation to its own endpoint. Returns True on success."""
        label = _describe(observation)
        logger.debug("Sending %s", label)
        ok = self._request(observation.method, observation.endpoint(), observation.to_body())
        if ok:
            logger.info("Sent %s", label)
        return ok

    # ── Traces ───────────────────────────────────────────

    def create_trace(self, name: str, metadata: Optional[dict[str, Any]] = None) -> str:
        """Create a trace and return its id.

        The id is generated locally before the request, so it is returned
        even when the request fails and errors are not thrown.
        """
        _require(name=name)
        trace = TraceCreate(name=name, metadata=metadata)
        self.send(trace)
        return trace.id

    def update_trace(
        self,
        trace_id: str,
        metadata: Optional[dict[str, Any]] = None,
        output: Optional[Any] = None,
    ) -> bool:
        _require(trace_id=trace_id)
        return self.send(TraceUpdate(trace_id=trace_id, metadata=metadata, output=output))

    # ── Observations ─────────────────────────────────────

    def create_generation(
        self,
        trace_id: str,
        name: str,
        start_time: datetime,
        end_time: datetime,
        model: str,
        prompt: str = "",
        response: str = "",
        metadata: Optional[dict[str, Any]] = None,
        usage: Optional[TokenUsage] = None,
    ) -> bool:
        _require(trace_id=trace_id, name=name, model=model)
        return self.send(
            GenerationCreate(
                trace_id=trace_id,
                name=name,
                start_time=start_time,
                end_time=end_time,
                model=model,
                input=prompt,
                output=response,
                metadata=metadata,
                usage=usage or TokenUsage(),
            )
        )

    def create_span(
        self,
        trace_id: str,
        name: str,
        input: Optional[Any] = None,
        output: Optional[Any] = None,
        metadata: Optional[dict[str, Any]] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> bool:
        """Create a span. Missing start or end times default to now."""
        _require(trace_id=trace_id, name=name)
        now = datetime.now(timezone.utc)
        start_time = start_time or now
        return self.send(
            SpanCreate(
                trace_id=trace_id,
                name=name,
                input=input,
                output=output,
                metadata=metadata,
                start_time=start_time,
                end_time=end_time or max(now, start_time),
            )
        )

    def create_event(
        self,
        trace_id: str,
        name: str,
        start_time: datetime,
        end_time: datetime,
        level: str = "INFO",
        metadata: Optional[dict[str, Any]] = None,
    ) -> bool:
        _require(trace_id=trace_id, name=name, level=level)
        return self.send(
            EventCreate(
                trace_id=trace_id,
                name=name,
                start_time=start_time,
                end_time=end_time,
                level=level,
                metadata=metadata,
            )
        )

    def create_batch(
        self,
        observations: Iterable[Union[TraceCreate, GenerationCreate, SpanCreate, EventCreate]],
    ) -> bool:
        """Send mixed observations in one ingestion request. Empty input is a no-op."""
        batch = IngestionBatch(batch=list(observations))
        if not batch.batch:
            logger.debug("Batch request contains no observations, skipping")
            return True
        return self.send(batch)

    def close(self) -> None:
        """Release the HTTP transport if this client is configured to own it."""
        if self._closed:
            return
        self._closed = True
        if self.config.release_client_on_dispose:
            self._http.close()

    def __enter__(self) -> "LangfuseClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _describe(observation: Sendable) -> str:
    if isinstance(observation, TraceCreate):
        return f"trace {observation.id} ({observation.name})"
    if isinstance(observation, TraceUpdate):
        return f"trace update {observation.trace_id}"
    if isinstance(observation, IngestionBatch):
        return f"ingestion batch of {len(observation.batch)} observations"
    if isinstance(observation, GenerationCreate):
        return (
            f"generation {observation.name} for trace {observation.trace_id} "
            f"(model={observation.model}, total_tokens={observation.usage.total_tokens})"
        )
    return f"{observation.kind.split('-')[0]} {observation.name} for trace {observation.trace_id}"
