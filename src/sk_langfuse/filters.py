"""Filter-style integration: record prompt renders and function invocations directly."""

import functools
import inspect
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Optional

from .client import LangfuseClient
from .mapper import TraceIdMapper
from .schema import TokenUsage

logger = logging.getLogger("sk_langfuse.filters")

TRACE_NAME_PREFIX = "SK Filter: "


class PromptRenderContext:
    """Handed to the ``prompt_render`` block; set ``rendered_prompt`` before leaving."""

    def __init__(self, function_name: str, arguments: Mapping[str, Any]):
        self.function_name = function_name
        self.arguments = dict(arguments)
        self.rendered_prompt: Optional[str] = None


class FunctionInvocationContext:
    """Handed to the ``function_invocation`` block.

    Set ``result`` and either ``usage`` (preferred) or ``metadata["usage"]``
    with whatever usage object the framework returned.
    """

    def __init__(
        self,
        function_name: str,
        arguments: Mapping[str, Any],
        plugin_name: Optional[str] = None,
    ):
        self.function_name = function_name
        self.arguments = dict(arguments)
        self.plugin_name = plugin_name
        self.result: Any = None
        self.usage: Optional[TokenUsage] = None
        self.metadata: dict[str, Any] = {}

    def resolved_usage(self) -> TokenUsage:
        if self.usage is not None:
            return self.usage
        return TokenUsage.from_metadata(self.metadata.get("usage")) or TokenUsage()


def _format_arguments(arguments: Mapping[str, Any]) -> str:
    return ", ".join(f"{k}: {'' if v is None else v}" for k, v in arguments.items())


class LangfuseKernelFilter:
    """Records kernel prompt renders as spans and function calls as generations.

    Every observation goes to one trace per filter instance. The remote trace
    is created on first use.

    Usage:
        lf_filter = LangfuseKernelFilter(client)

        with lf_filter.prompt_render("summarize", {"input": text}) as ctx:
            ctx.rendered_prompt = render(...)

        @lf_filter.observe(plugin_name="writer")
        def summarize(input: str) -> str:
            ...
    """

    def __init__(
        self,
        client: LangfuseClient,
        trace_id: Optional[str] = None,
        trace_name: Optional[str] = None,
        mapper: Optional[TraceIdMapper] = None,
    ):
        self.client = client
        self.trace_id = trace_id or str(uuid.uuid4())
        self.trace_name = trace_name or f"{TRACE_NAME_PREFIX}{self.trace_id}"
        self.mapper = mapper or TraceIdMapper(client.create_trace)

    def remote_trace_id(self) -> str:
        return self.mapper.resolve_or_create(self.trace_id, self.trace_name)

    @contextmanager
    def prompt_render(
        self, function_name: str, arguments: Optional[Mapping[str, Any]] = None
    ) -> Iterator[PromptRenderContext]:
        ctx = PromptRenderContext(function_name, arguments or {})
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        yield ctx
        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            self.client.create_span(
                self.remote_trace_id(),
                "prompt_render",
                input={
                    "function": function_name,
                    "arguments": {k: str(v) for k, v in ctx.arguments.items()},
                },
                output={"rendered_prompt": ctx.rendered_prompt or ""},
                metadata={"duration_ms": duration_ms},
                start_time=started_at,
                end_time=datetime.now(timezone.utc),
            )
        except Exception:
            if self.client.config.throw_on_error:
                raise
            logger.warning("Failed to record prompt render for %s", function_name, exc_info=True)

    @contextmanager
    def function_invocation(
        self,
        function_name: str,
        arguments: Optional[Mapping[str, Any]] = None,
        plugin_name: Optional[str] = None,
    ) -> Iterator[FunctionInvocationContext]:
        ctx = FunctionInvocationContext(function_name, arguments or {}, plugin_name)
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        status = "ok"
        error: Optional[str] = None

        try:
            yield ctx
        except BaseException as e:
            status = "error"
            error = f"{type(e).__name__}: {str(e)[:500]}"
            raise
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            metadata: dict[str, Any] = {
                "duration_ms": duration_ms,
                "plugin": plugin_name or "",
                "status": status,
            }
            if error:
                metadata["error"] = error
            self._record_invocation(ctx, started_at, metadata)

    def _record_invocation(
        self,
        ctx: FunctionInvocationContext,
        started_at: datetime,
        metadata: dict[str, Any],
    ) -> None:
        try:
            self.client.create_generation(
                self.remote_trace_id(),
                ctx.function_name,
                start_time=started_at,
                end_time=datetime.now(timezone.utc),
                model=ctx.plugin_name or "unknown",
                prompt=_format_arguments(ctx.arguments),
                response="" if ctx.result is None else str(ctx.result),
                metadata=metadata,
                usage=ctx.resolved_usage(),
            )
        except Exception:
            # Never let telemetry mask the user's own exception
            if self.client.config.throw_on_error and metadata["status"] == "ok":
                raise
            logger.warning(
                "Failed to record function invocation for %s", ctx.function_name, exc_info=True
            )

    def observe(
        self,
        name: Optional[str] = None,
        plugin_name: Optional[str] = None,
        usage_from: Optional[Callable[[Any], Optional[TokenUsage]]] = None,
    ):
        """Decorator recording each call of the wrapped function as a generation.

        ``usage_from`` maps the function's return value to a ``TokenUsage``.
        Without it, a ``usage`` attribute or key on the result is read through
        ``TokenUsage.from_metadata``. Coroutine functions get an async wrapper
        so the call is timed and recorded once it has been awaited.
        """

        def decorator(func: Callable) -> Callable:
            sig = inspect.signature(func)
            function_name = name or func.__name__

            def bind_arguments(args, kwargs) -> dict[str, Any]:
                try:
                    return dict(sig.bind_partial(*args, **kwargs).arguments)
                except TypeError:
                    return dict(kwargs)

            def capture(ctx: FunctionInvocationContext, result: Any) -> None:
                ctx.result = result
                if usage_from is not None:
                    ctx.usage = usage_from(result)
                elif isinstance(result, Mapping):
                    ctx.metadata["usage"] = result.get("usage")
                else:
                    ctx.metadata["usage"] = getattr(result, "usage", None)

            if inspect.iscoroutinefunction(func):

                @functools.wraps(func)
                async def async_wrapper(*args, **kwargs):
                    arguments = bind_arguments(args, kwargs)
                    with self.function_invocation(function_name, arguments, plugin_name) as ctx:
                        result = await func(*args, **kwargs)
                        capture(ctx, result)
                        return result

                return async_wrapper

            @functools.wraps(func)
            def wrapper(*args, **kwargs):
                arguments = bind_arguments(args, kwargs)
                with self.function_invocation(function_name, arguments, plugin_name) as ctx:
                    result = func(*args, **kwargs)
                    capture(ctx, result)
                    return result

            return wrapper

        return decorator
