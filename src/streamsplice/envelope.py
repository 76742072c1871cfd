"""Encode output events onto one byte stream.

Structured records use a one-digit type prefix::

    0:"some text"\\n
    1:"{\\"function_call\\": ...}"\\n
    2:[{"any": "json"}]\\n

In :attr:`OutputMode.RAW` plain text skips the envelope and is written
as-is, so text-only consumers see the provider text unmodified.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from enum import Enum
from typing import Any

from streamsplice.events import EventKind, OutputEvent

STREAM_PART_PREFIXES = {
    EventKind.TEXT: "0",
    EventKind.FUNCTION_CALL: "1",
    EventKind.DATA: "2",
}
_KINDS_BY_PREFIX = {v: k for k, v in STREAM_PART_PREFIXES.items()}


class OutputMode(Enum):
    RAW = "raw"
    ENVELOPE = "envelope"


def format_stream_part(kind: EventKind, value: Any) -> str:
    """Return the ``"<digit>:<json>\\n"`` record for one event."""
    payload = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return f"{STREAM_PART_PREFIXES[kind]}:{payload}\n"


def parse_stream_part(line: str) -> OutputEvent:
    """Decode one enveloped record back into an :class:`OutputEvent`.

    Raises:
        ValueError: If the line is not a well-formed record.
    """
    prefix, sep, payload = line.rstrip("\n").partition(":")
    if not sep or prefix not in _KINDS_BY_PREFIX:
        raise ValueError(f"not a stream part: {line!r}")
    return OutputEvent(_KINDS_BY_PREFIX[prefix], json.loads(payload))


class StreamMultiplexer:
    """Turns :class:`OutputEvent` objects into bytes for the caller."""

    def __init__(self, mode: OutputMode = OutputMode.RAW):
        self.mode = mode

    def encode(self, event: OutputEvent) -> bytes:
        if self.mode is OutputMode.RAW and event.kind is EventKind.TEXT:
            return event.payload.encode("utf-8")
        return format_stream_part(event.kind, event.payload).encode("utf-8")

    async def encode_stream(
        self,
        events: AsyncIterator[OutputEvent],
        data: StreamData | None = None,
    ) -> AsyncIterator[bytes]:
        """Encode *events*, interleaving pending *data* after each one."""
        async with aclosing(events):
            async for event in events:
                if event.kind is EventKind.TEXT and not event.payload:
                    continue
                yield self.encode(event)
                if data is not None:
                    pending = data.drain()
                    if pending is not None:
                        yield self.encode(pending)
        if data is not None:
            pending = data.drain()
            if pending is not None:
                yield self.encode(pending)


class StreamData:
    """Out-of-band JSON values sent alongside the text stream.

    Values appended while the stream runs are written as a single ``2:``
    record after the next event, and whatever remains when the stream
    ends is written last.
    """

    def __init__(self) -> None:
        self._pending: list[Any] = []
        self.is_closed = False

    def append(self, value: Any) -> None:
        if self.is_closed:
            raise RuntimeError("StreamData has already been closed")
        self._pending.append(value)

    def close(self) -> None:
        self.is_closed = True

    def drain(self) -> OutputEvent | None:
        if not self._pending:
            return None
        pending, self._pending = self._pending, []
        return OutputEvent.data(pending)
