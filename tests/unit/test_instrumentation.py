"""Unit tests for the instrumentation module.

``opentelemetry-api`` is a test dependency so ``SpanKind`` and
``StatusCode`` can be imported directly for assertions.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from opentelemetry.trace import SpanKind, StatusCode

import streamsplice.instrumentation as inst
from streamsplice.callbacks import StreamCallbacks
from streamsplice.dispatch import (
    ChatStreamPayload,
    OpenAIDispatcher,
    create_chat_completion,
)
from streamsplice.instrumentation import (
    dispatch_span,
    function_call_span,
    record_error,
    uninstrument,
)
from streamsplice.message import Message, MessageRole

from tests.conftest import FakeUpstream, function_call_chunks, text_chunks


@pytest.fixture(autouse=True)
def _reset_tracer():
    inst._tracer = None
    yield
    inst._tracer = None


def _mock_otel(mock_trace):
    """Patch find_spec + sys.modules for a mock OTel env."""
    return (
        patch("importlib.util.find_spec", return_value=MagicMock()),
        patch.dict(
            "sys.modules",
            {
                "opentelemetry": MagicMock(trace=mock_trace),
                "opentelemetry.trace": mock_trace,
            },
        ),
    )


# -------------------------------------------------------------------
# instrument() / uninstrument()
# -------------------------------------------------------------------


class TestInstrument:
    def test_raises_without_otel_installed(self):
        with patch("importlib.util.find_spec", return_value=None):
            with pytest.raises(ImportError, match="pip install"):
                inst.instrument()

    def test_sets_global_tracer(self):
        mock_tracer = MagicMock()
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = mock_tracer
        mock_trace.NoOpTracer = type("NoOpTracer", (), {})

        p1, p2 = _mock_otel(mock_trace)
        with p1, p2:
            inst.instrument()

        assert inst._tracer is mock_tracer
        mock_trace.get_tracer.assert_called_once_with("streamsplice")

    def test_logs_for_noop_tracer(self, caplog):
        NoOpTracer = type("NoOpTracer", (), {})
        mock_trace = MagicMock()
        mock_trace.get_tracer.return_value = NoOpTracer()
        mock_trace.NoOpTracer = NoOpTracer

        p1, p2 = _mock_otel(mock_trace)
        with p1, p2:
            with caplog.at_level(logging.INFO, logger="streamsplice.instrumentation"):
                inst.instrument()

        assert any(
            "No TracerProvider configured" in r.message
            for r in caplog.records
        )

    def test_uninstrument_clears_tracer(self):
        inst._tracer = MagicMock()
        uninstrument()
        assert inst._tracer is None


# -------------------------------------------------------------------
# Span helpers
# -------------------------------------------------------------------


class TestSpansUninstrumented:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "span_fn,args",
        [
            (dispatch_span, ("https://api.example.com/v1", "m")),
            (function_call_span, ("lookup",)),
        ],
        ids=["dispatch_span", "function_call_span"],
    )
    async def test_span_yields_none_without_tracer(self, span_fn, args):
        async with span_fn(*args) as s:
            assert s is None


class TestSpansInstrumented:
    @pytest.fixture(autouse=True)
    def _set_mock_tracer(self):
        self.mock_span = MagicMock()
        self.mock_tracer = MagicMock()
        self.mock_tracer.start_as_current_span.return_value.__enter__ = (
            MagicMock(return_value=self.mock_span)
        )
        self.mock_tracer.start_as_current_span.return_value.__exit__ = (
            MagicMock(return_value=False)
        )
        inst._tracer = self.mock_tracer

    @pytest.mark.asyncio
    async def test_dispatch_span_creates_client_span(self):
        async with dispatch_span("https://api.example.com/v1", "gpt-4o") as s:
            assert s is self.mock_span

        self.mock_tracer.start_as_current_span.assert_called_once_with(
            "chat gpt-4o",
            kind=SpanKind.CLIENT,
            attributes={
                "gen_ai.operation.name": "chat",
                "gen_ai.request.model": "gpt-4o",
                "server.address": "https://api.example.com/v1",
            },
        )

    @pytest.mark.asyncio
    async def test_function_call_span_creates_span(self):
        async with function_call_span("get_weather") as s:
            assert s is self.mock_span

        self.mock_tracer.start_as_current_span.assert_called_once_with(
            "execute_tool get_weather",
            attributes={
                "gen_ai.operation.name": "execute_tool",
                "gen_ai.tool.name": "get_weather",
            },
        )

    @pytest.mark.asyncio
    async def test_continuation_traces_chat_tool_chat(self, monkeypatch):
        dispatcher = OpenAIDispatcher(api_key="sk-test")
        monkeypatch.setattr(
            dispatcher.client.chat.completions,
            "create",
            AsyncMock(side_effect=[
                FakeUpstream(function_call_chunks("get_weather", '{"city": "Oslo"}')),
                FakeUpstream(text_chunks("Cold.")),
            ]),
        )
        payload = ChatStreamPayload(
            messages=[Message(role=MessageRole.USER, content="weather?")],
            model="gpt-4o",
        )

        async def on_function_call(call, build_messages):
            return await dispatcher.dispatch(
                payload.with_messages(build_messages({"temp": -3}))
            )

        response = await create_chat_completion(
            payload, dispatcher, StreamCallbacks(on_function_call=on_function_call),
        )
        assert await response.read() == b"Cold."

        names = [c.args[0] for c in self.mock_tracer.start_as_current_span.call_args_list]
        assert names == ["chat gpt-4o", "execute_tool get_weather", "chat gpt-4o"]


# -------------------------------------------------------------------
# record_error
# -------------------------------------------------------------------


class TestRecordError:
    def test_sets_status_and_records_exception(self):
        span = MagicMock()
        exc = RuntimeError("boom")
        record_error(span, exc)

        span.set_status.assert_called_once_with(StatusCode.ERROR, "boom")
        span.record_exception.assert_called_once_with(exc)
        span.set_attribute.assert_called_once_with("error.type", "RuntimeError")

    def test_noop_on_none_span(self):
        record_error(None, RuntimeError("boom"))
