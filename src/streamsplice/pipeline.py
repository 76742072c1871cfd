"""Entry point wiring classifier, extractor, aggregator and multiplexer."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing

from streamsplice.aggregator import FunctionCallAggregator
from streamsplice.callbacks import CallbackDriver, StreamCallbacks
from streamsplice.chunks import classify_chunk, decode_chunk
from streamsplice.envelope import OutputMode, StreamData, StreamMultiplexer
from streamsplice.events import OutputEvent
from streamsplice.extract import TextExtractor
from streamsplice.message import Message
from streamsplice.source import EventSource, iter_events


async def iter_text(
    source: EventSource,
    driver: CallbackDriver,
    continuation: bool = False,
) -> AsyncIterator[str]:
    """Classify and extract every event of *source* into text fragments.

    Empty fragments are dropped.  ``on_start`` fires only for the first
    segment of a stream; ``on_completion`` fires when the source ends.
    """
    extractor = TextExtractor()
    completion = ""
    async with aclosing(iter_events(source)) as events:
        if not continuation:
            await driver.start()
        async for event in events:
            chunk = decode_chunk(event)
            await driver.chunk(chunk)
            text = extractor.extract(classify_chunk(chunk))
            if not text:
                continue
            completion += text
            await driver.token(text)
            yield text
    tail = extractor.flush()
    if tail:
        completion += tail
        yield tail
    await driver.completion(completion)


def stream_events(
    source: EventSource,
    callbacks: StreamCallbacks | None = None,
    messages: list[Message] | None = None,
) -> AsyncIterator[OutputEvent]:
    """Return the aggregated :class:`OutputEvent` stream for *source*."""
    driver = CallbackDriver(callbacks)
    aggregator = FunctionCallAggregator(
        lambda src, continuation: iter_text(src, driver, continuation),
        driver,
        messages=messages,
    )
    return aggregator.run(source)


async def stream_completion(
    source: EventSource,
    callbacks: StreamCallbacks | None = None,
    *,
    mode: OutputMode = OutputMode.RAW,
    data: StreamData | None = None,
    messages: list[Message] | None = None,
) -> AsyncIterator[bytes]:
    """Normalize a provider stream into the caller-facing byte stream.

    Args:
        source: Async iterable of provider chunks, or an ``httpx.Response``
            with a Server-Sent-Events body.
        callbacks: Optional lifecycle hooks and function-call handler.
        mode: Whether plain text is written raw or enveloped. Attaching
            *data* forces :attr:`OutputMode.ENVELOPE`.
        data: Optional side channel of JSON values written as ``2:`` records.
        messages: Messages exchanged before this stream, extended by the
            message builder passed to ``on_function_call``.

    Closing the returned iterator early closes every upstream reader and
    still fires ``on_final``.
    """
    if data is not None:
        mode = OutputMode.ENVELOPE
    multiplexer = StreamMultiplexer(mode)
    events = stream_events(source, callbacks, messages)
    async with aclosing(multiplexer.encode_stream(events, data)) as encoded:
        async for chunk in encoded:
            yield chunk
