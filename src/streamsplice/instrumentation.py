"""Optional OpenTelemetry instrumentation for streamsplice.

Call ``streamsplice.instrument()`` once at startup to enable tracing.
Requires ``opentelemetry-api`` to be installed; streams behave
identically without it.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "streamsplice") -> None:
    """Start emitting spans for upstream dispatches and function calls.

    Each ``create_chat_completion`` dispatch gets a client ``chat <model>``
    span, and each ``on_function_call`` handler runs inside an
    ``execute_tool <name>`` span, so a continuation shows up as a tool
    span followed by a second ``chat`` span.  Spans go to whatever
    TracerProvider is current, so configure one first::

        trace.set_tracer_provider(TracerProvider())
        streamsplice.instrument()

    Raises:
        ImportError: ``opentelemetry-api`` is missing; install the
            ``streamsplice[otel]`` extra.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "opentelemetry-api is required for instrumentation. "
            "Install it with: pip install streamsplice[otel]"
        )
    from opentelemetry import trace
    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; spans will be "
            "discarded. Set up a TracerProvider to export "
            "traces."
        )
    else:
        logger.info("streamsplice instrumentation enabled")


def uninstrument() -> None:
    """Stop creating spans; dispatch and handler spans become no-ops."""
    global _tracer
    _tracer = None


@asynccontextmanager
async def dispatch_span(endpoint: str, model: str):
    """Wrap an upstream dispatch in a ``chat`` span."""
    if _tracer is None:
        yield None
        return
    from opentelemetry.trace import SpanKind

    with _tracer.start_as_current_span(
        f"chat {model}",
        kind=SpanKind.CLIENT,
        attributes={
            "gen_ai.operation.name": "chat",
            "gen_ai.request.model": model,
            "server.address": endpoint,
        },
    ) as span:
        yield span


@asynccontextmanager
async def function_call_span(name: str):
    """Wrap a function-call handler in an ``execute_tool`` span."""
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(
        f"execute_tool {name}",
        attributes={
            "gen_ai.operation.name": "execute_tool",
            "gen_ai.tool.name": name,
        },
    ) as span:
        yield span


def record_error(span, exception: BaseException) -> None:
    """Mark a dispatch or handler span as failed with *exception*.

    Upstream rejections and handler faults both land here.  *span* is
    ``None`` when tracing is off.
    """
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.set_status(StatusCode.ERROR, str(exception))
    span.record_exception(exception)
    span.set_attribute(
        "error.type", type(exception).__qualname__
    )
