"""Lifecycle callbacks for a completion stream.

Every callback may be a plain function or a coroutine function.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionCallPayload:
    """A completed function call as handed to ``on_function_call``.

    ``arguments`` is the decoded JSON value, not the raw string.
    """

    name: str
    arguments: Any


FunctionCallHandler = Callable[
    [FunctionCallPayload, Callable[[Any], list]],
    Any,
]


@dataclass
class StreamCallbacks:
    """Hooks fired while a completion streams.

    Args:
        on_start: Called once when the stream starts. Never called for
            continuation streams started by ``on_function_call``.
        on_token: Called with each non-empty text fragment.
        on_completion: Called with the text of each upstream stream when
            it ends normally, continuations included.
        on_final: Called exactly once with the full text of the last
            upstream stream, on every exit path.
        on_chunk: Called with each provider event, decoded to a dict,
            before it is classified.
        on_function_call: Called once per completed function call with the
            decoded payload and a message builder. May return ``None``, a
            string, or a new event source to continue the conversation.
    """

    on_start: Callable[[], Any] | None = None
    on_token: Callable[[str], Any] | None = None
    on_completion: Callable[[str], Any] | None = None
    on_final: Callable[[str], Any] | None = None
    on_chunk: Callable[[Any], Any] | None = None
    on_function_call: FunctionCallHandler | None = None


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class CallbackDriver:
    """Fires :class:`StreamCallbacks` hooks for one top-level stream.

    ``final`` is guarded so it runs at most once however many exit paths
    reach it.
    """

    def __init__(self, callbacks: StreamCallbacks | None = None):
        self.callbacks = callbacks or StreamCallbacks()
        self._final_fired = False

    @property
    def on_function_call(self) -> FunctionCallHandler | None:
        return self.callbacks.on_function_call

    async def start(self) -> None:
        if self.callbacks.on_start is not None:
            await maybe_await(self.callbacks.on_start())

    async def token(self, text: str) -> None:
        if self.callbacks.on_token is not None:
            await maybe_await(self.callbacks.on_token(text))

    async def completion(self, text: str) -> None:
        if self.callbacks.on_completion is not None:
            await maybe_await(self.callbacks.on_completion(text))

    async def chunk(self, raw: Any) -> None:
        if self.callbacks.on_chunk is not None:
            await maybe_await(self.callbacks.on_chunk(raw))

    async def final(self, text: str) -> None:
        if self._final_fired:
            return
        self._final_fired = True
        if self.callbacks.on_final is None:
            return
        logger.debug(f"Firing on_final with {len(text)} characters")
        await maybe_await(self.callbacks.on_final(text))
