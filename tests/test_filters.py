"""Tests for the filter-style integration."""

import asyncio
import inspect
import logging
from types import SimpleNamespace

import pytest

from sk_langfuse.config import LangfuseConfig
from sk_langfuse.filters import LangfuseKernelFilter
from sk_langfuse.schema import TokenUsage


@pytest.fixture
def kernel_filter(client):
    return LangfuseKernelFilter(client, trace_id="conv-1")


# ── Prompt render ────────────────────────────────────────


def test_prompt_render_records_span(client, kernel_filter):
    with kernel_filter.prompt_render("summarize", {"input": "text", "n": 3}) as ctx:
        ctx.rendered_prompt = "Summarize: text"

    client.create_trace.assert_called_once_with("SK Filter: conv-1")
    client.create_span.assert_called_once()
    args, kwargs = client.create_span.call_args
    assert args == ("remote-1", "prompt_render")
    assert kwargs["input"] == {
        "function": "summarize",
        "arguments": {"input": "text", "n": "3"},
    }
    assert kwargs["output"] == {"rendered_prompt": "Summarize: text"}
    assert kwargs["metadata"]["duration_ms"] >= 0
    assert kwargs["end_time"] >= kwargs["start_time"]


def test_prompt_render_failure_is_logged(client, kernel_filter, caplog):
    client.create_span.side_effect = RuntimeError("down")

    with caplog.at_level(logging.WARNING, logger="sk_langfuse.filters"):
        with kernel_filter.prompt_render("summarize") as ctx:
            ctx.rendered_prompt = "x"

    assert "Failed to record prompt render for summarize" in caplog.text


def test_prompt_render_failure_raises_when_configured(client):
    client.config = LangfuseConfig(public_key="pk", secret_key="sk", throw_on_error=True)
    client.create_span.side_effect = RuntimeError("down")
    kernel_filter = LangfuseKernelFilter(client)

    with pytest.raises(RuntimeError):
        with kernel_filter.prompt_render("summarize"):
            pass


# ── Function invocation ──────────────────────────────────


def test_function_invocation_records_generation(client, kernel_filter):
    with kernel_filter.function_invocation(
        "summarize", {"input": "text", "style": None}, plugin_name="writer"
    ) as ctx:
        ctx.result = "short"
        ctx.usage = TokenUsage(prompt_tokens=4, completion_tokens=2, total_tokens=6)

    args, kwargs = client.create_generation.call_args
    assert args == ("remote-1", "summarize")
    assert kwargs["model"] == "writer"
    assert kwargs["prompt"] == "input: text, style: "
    assert kwargs["response"] == "short"
    assert kwargs["usage"].total_tokens == 6
    assert kwargs["metadata"]["status"] == "ok"
    assert kwargs["metadata"]["plugin"] == "writer"
    assert "error" not in kwargs["metadata"]


def test_function_invocation_usage_from_metadata(client, kernel_filter):
    with kernel_filter.function_invocation("summarize") as ctx:
        ctx.metadata["usage"] = SimpleNamespace(
            input_token_count=7, output_token_count=3, total_token_count=10
        )

    kwargs = client.create_generation.call_args.kwargs
    assert kwargs["model"] == "unknown"
    assert kwargs["response"] == ""
    usage = kwargs["usage"]
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (7, 3, 10)


def test_function_invocation_without_usage(client, kernel_filter):
    with kernel_filter.function_invocation("summarize"):
        pass

    assert client.create_generation.call_args.kwargs["usage"].is_empty


def test_function_invocation_error_is_recorded_and_reraised(client, kernel_filter):
    with pytest.raises(ValueError, match="bad input"):
        with kernel_filter.function_invocation("summarize"):
            raise ValueError("bad input")

    metadata = client.create_generation.call_args.kwargs["metadata"]
    assert metadata["status"] == "error"
    assert metadata["error"] == "ValueError: bad input"


def test_recording_failure_never_masks_user_error(client):
    client.config = LangfuseConfig(public_key="pk", secret_key="sk", throw_on_error=True)
    client.create_generation.side_effect = RuntimeError("telemetry down")
    kernel_filter = LangfuseKernelFilter(client)

    with pytest.raises(ValueError):
        with kernel_filter.function_invocation("summarize"):
            raise ValueError("bad input")


def test_observations_share_one_trace(client, kernel_filter):
    with kernel_filter.prompt_render("a"):
        pass
    with kernel_filter.function_invocation("a"):
        pass
    with kernel_filter.function_invocation("b"):
        pass

    client.create_trace.assert_called_once()


# ── observe decorator ────────────────────────────────────


def test_observe_records_call(client, kernel_filter):
    @kernel_filter.observe(plugin_name="writer")
    def summarize(text, style="brief"):
        return {"text": text[:3], "usage": {"prompt_tokens": 5, "completion_tokens": 1}}

    result = summarize("hello")

    assert result["text"] == "hel"
    args, kwargs = client.create_generation.call_args
    assert args[1] == "summarize"
    assert kwargs["prompt"] == "text: hello"
    assert kwargs["usage"].prompt_tokens == 5
    assert kwargs["usage"].completion_tokens == 1
    assert kwargs["usage"].total_tokens is None


def test_observe_with_custom_name_and_usage_from(client, kernel_filter):
    @kernel_filter.observe(
        name="writer.summarize",
        usage_from=lambda r: TokenUsage(total_tokens=len(r)),
    )
    def summarize(text):
        return text.upper()

    assert summarize(text="abc") == "ABC"
    args, kwargs = client.create_generation.call_args
    assert args[1] == "writer.summarize"
    assert kwargs["usage"].total_tokens == 3
    assert summarize.__name__ == "summarize"


def test_observe_reraises(client, kernel_filter):
    @kernel_filter.observe()
    def explode():
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError, match="nope"):
        explode()

    assert client.create_generation.call_args.kwargs["metadata"]["status"] == "error"


def test_observe_awaits_coroutine_functions(client, kernel_filter):
    @kernel_filter.observe(plugin_name="writer")
    async def summarize(text):
        await asyncio.sleep(0.05)
        return SimpleNamespace(value="summary", usage={"total_tokens": 8})

    assert inspect.iscoroutinefunction(summarize)
    client.create_generation.assert_not_called()

    result = asyncio.run(summarize("hi"))

    assert result.value == "summary"
    kwargs = client.create_generation.call_args.kwargs
    assert "summary" in kwargs["response"]
    assert "coroutine" not in kwargs["response"]
    assert kwargs["prompt"] == "text: hi"
    assert kwargs["usage"].total_tokens == 8
    assert kwargs["metadata"]["duration_ms"] >= 20
    assert kwargs["metadata"]["status"] == "ok"


def test_observe_async_error_is_recorded(client, kernel_filter):
    @kernel_filter.observe()
    async def explode():
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError, match="nope"):
        asyncio.run(explode())

    metadata = client.create_generation.call_args.kwargs["metadata"]
    assert metadata["status"] == "error"
    assert metadata["error"] == "RuntimeError: nope"


def test_interrupt_is_recorded_as_error(client, kernel_filter):
    with pytest.raises(KeyboardInterrupt):
        with kernel_filter.function_invocation("summarize"):
            raise KeyboardInterrupt()

    metadata = client.create_generation.call_args.kwargs["metadata"]
    assert metadata["status"] == "error"
    assert metadata["error"].startswith("KeyboardInterrupt")
