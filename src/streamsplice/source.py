"""Upstream event sources.

An event source is either an async iterable of provider chunks (for
example the ``AsyncStream`` returned by ``openai``) or an
``httpx.Response`` whose body is a Server-Sent-Events stream.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from contextlib import aclosing
from typing import Any, Union

import httpx

from streamsplice.errors import UpstreamResponseError

logger = logging.getLogger(__name__)

EventSource = Union[AsyncIterable[Any], httpx.Response]

DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Line-level decoder for ``text/event-stream`` bodies.

    Feed it the lines of the body (as ``httpx`` yields them, without
    terminators); a blank line dispatches the ``data`` gathered so far.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def decode(self, line: str) -> str | None:
        if not line:
            return self.flush()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        return None

    def flush(self) -> str | None:
        """Return the pending event's data, if any, and reset."""
        if not self._data:
            return None
        data, self._data = "\n".join(self._data), []
        return data


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield each SSE ``data`` payload until ``[DONE]`` or end of body."""
    if response.is_error:
        await response.aread()
        try:
            body = response.json()
        except json.JSONDecodeError:
            body = response.text
        raise UpstreamResponseError(response.status_code, body)

    decoder = SSEDecoder()
    async with aclosing(response.aiter_lines()) as lines:
        async for line in lines:
            data = decoder.decode(line)
            if data is None:
                continue
            if data == DONE_SENTINEL:
                return
            yield data
    data = decoder.flush()
    if data is not None and data != DONE_SENTINEL:
        yield data


async def release(source: Any) -> None:
    """Close an upstream reader, awaiting the close when needed."""
    close = getattr(source, "aclose", None) or getattr(source, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


async def iter_events(source: EventSource) -> AsyncIterator[Any]:
    """Yield raw events from *source* and always release it afterwards."""
    try:
        if isinstance(source, httpx.Response):
            async for data in iter_sse_data(source):
                yield data
        else:
            async for event in source:
                yield event
    finally:
        logger.debug(f"Releasing upstream source {type(source).__name__}")
        await release(source)
