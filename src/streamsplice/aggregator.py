"""Function-call aggregation and continuation splicing.

The aggregator watches the extracted text of a stream.  When a segment
opens with an inline function call it buffers the call until the
segment ends, then either emits it, replaces it with a string from the
handler, or follows a continuation stream returned by the handler.
Continuations are spliced by swapping the current segment for a new one
inside a single loop, so a long chain of calls never nests generators.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from streamsplice.callbacks import CallbackDriver, FunctionCallPayload, maybe_await
from streamsplice.errors import MalformedFunctionCallError
from streamsplice.events import OutputEvent
from streamsplice.extract import FUNCTION_CALL_PREFIX
from streamsplice.instrumentation import function_call_span, record_error
from streamsplice.message import FunctionCall, Message, build_function_call_messages

logger = logging.getLogger(__name__)

SegmentFactory = Callable[[Any, bool], AsyncIterator[str]]


@dataclass
class AggregationState:
    """Mutable state for one upstream segment."""

    pending_messages: list[Message] = field(default_factory=list)
    is_first_chunk: bool = True
    is_function_streaming_in: bool = False
    aggregated_response: str = ""
    aggregated_final_text: str = ""


@dataclass
class _Continuation:
    source: Any
    messages: list[Message]


def parse_function_call(raw: str) -> tuple[FunctionCall, Any]:
    """Parse buffered call text into the call and its decoded arguments.

    Raises:
        MalformedFunctionCallError: If *raw* is not
            ``{"function_call": {"name": ..., "arguments": "<json>"}}``.
    """
    try:
        payload = json.loads(raw)
        call = payload["function_call"]
        name = call["name"]
        arguments = call["arguments"]
        decoded = json.loads(arguments)
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise MalformedFunctionCallError(f"could not parse function call: {e}") from e
    if not isinstance(name, str) or not isinstance(arguments, str):
        raise MalformedFunctionCallError("function call name and arguments must be strings")
    return FunctionCall(name=name, arguments=arguments), decoded


class FunctionCallAggregator:
    """Drives one top-level stream and every continuation spliced into it.

    Args:
        open_segment: Builds the extracted text stream for an event source.
            The second argument is ``True`` for continuation segments.
        driver: Callback driver for the top-level stream.
        messages: Messages already exchanged before this stream. The
            message builder handed to ``on_function_call`` extends them.
    """

    def __init__(
        self,
        open_segment: SegmentFactory,
        driver: CallbackDriver,
        messages: list[Message] | None = None,
    ):
        self._open_segment = open_segment
        self._driver = driver
        self._messages = list(messages or [])

    async def run(self, source: Any) -> AsyncIterator[OutputEvent]:
        state = AggregationState(pending_messages=list(self._messages))
        segment = self._open_segment(source, False)
        try:
            while segment is not None:
                async with aclosing(segment):
                    async for text in segment:
                        state.aggregated_final_text += text
                        if state.is_function_streaming_in:
                            state.aggregated_response += text
                            continue
                        if state.is_first_chunk and text.startswith(FUNCTION_CALL_PREFIX):
                            state.is_first_chunk = False
                            state.is_function_streaming_in = True
                            state.aggregated_response += text
                            continue
                        yield OutputEvent.text(text)
                segment = None

                if not state.is_function_streaming_in:
                    break
                state.is_function_streaming_in = False
                outcome = await self._complete_call(state)
                if isinstance(outcome, OutputEvent):
                    yield outcome
                elif outcome is not None:
                    logger.info(
                        f"Continuing stream with {len(outcome.messages)} pending messages"
                    )
                    state = AggregationState(pending_messages=outcome.messages)
                    segment = self._open_segment(outcome.source, True)
        finally:
            await self._driver.final(state.aggregated_final_text)

    async def _complete_call(
        self, state: AggregationState
    ) -> OutputEvent | _Continuation | None:
        raw = state.aggregated_response
        try:
            call, arguments = parse_function_call(raw)
        except MalformedFunctionCallError as e:
            logger.warning(f"Emitting malformed function call as-is: {e}")
            return OutputEvent.function_call(raw)

        handler = self._driver.on_function_call
        if handler is None:
            return OutputEvent.function_call(raw)

        built: list[Message] | None = None

        def build_messages(result: Any) -> list[Message]:
            nonlocal built
            built = build_function_call_messages(state.pending_messages, call, result)
            return built

        logger.info(f"Calling function handler for {call.name}")
        async with function_call_span(call.name) as span:
            try:
                response = await maybe_await(handler(
                    FunctionCallPayload(name=call.name, arguments=arguments),
                    build_messages,
                ))
            except Exception as e:
                logger.error(f"Function handler for {call.name} raised: {e}")
                record_error(span, e)
                raise

        if response is None:
            return OutputEvent.function_call(raw)
        if isinstance(response, str):
            return OutputEvent.text(response)
        messages = built if built is not None else list(state.pending_messages)
        return _Continuation(source=response, messages=messages)
