"""Events emitted by the aggregator and encoded by the multiplexer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventKind(Enum):
    TEXT = "text"
    FUNCTION_CALL = "function_call"
    DATA = "data"


@dataclass(frozen=True)
class OutputEvent:
    """One unit of output, before encoding onto the byte stream.

    ``payload`` is a JSON value: a string for text and function calls,
    usually a list for data.
    """

    kind: EventKind
    payload: Any

    @classmethod
    def text(cls, payload: str) -> OutputEvent:
        return cls(EventKind.TEXT, payload)

    @classmethod
    def function_call(cls, payload: str) -> OutputEvent:
        return cls(EventKind.FUNCTION_CALL, payload)

    @classmethod
    def data(cls, payload: list) -> OutputEvent:
        return cls(EventKind.DATA, payload)
