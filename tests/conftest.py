from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from sk_langfuse.config import LangfuseConfig
from sk_langfuse.schema import TelemetryEvent

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    return LangfuseConfig(public_key="pk-test", secret_key="sk-test")


@pytest.fixture
def client(config):
    client = MagicMock()
    client.config = config
    client.create_trace.return_value = "remote-1"
    client.send.return_value = True
    return client


@pytest.fixture
def make_event():
    def _make(
        name="FunctionInvocation",
        span_id="span-1",
        trace_id="trace-1",
        parent_id=None,
        source="semantic_kernel.functions",
        tags=None,
        **kwargs,
    ) -> TelemetryEvent:
        return TelemetryEvent(
            name=name,
            span_id=span_id,
            trace_id=trace_id,
            parent_id=parent_id,
            source=source,
            start_time=kwargs.pop("start_time", START),
            duration=kwargs.pop("duration", timedelta(milliseconds=250)),
            status=kwargs.pop("status", "ok"),
            tags=tags or {},
            **kwargs,
        )

    return _make
