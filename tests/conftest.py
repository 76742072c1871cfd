import json
from collections.abc import AsyncIterator

import httpx
import pytest

from streamsplice.callbacks import StreamCallbacks


# ---------------------------------------------------------------------------
# Provider chunk builders (mirror the OpenAI streaming shape)
# ---------------------------------------------------------------------------

def chat_chunk(
    content: str | None = None,
    *,
    name: str | None = None,
    arguments: str | None = None,
    finish_reason: str | None = None,
    role: str | None = None,
    **extra,
) -> dict:
    """Fake chat-style chunk with a single choice."""
    delta: dict = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    if name is not None or arguments is not None:
        delta["function_call"] = {}
        if name is not None:
            delta["function_call"]["name"] = name
        if arguments is not None:
            delta["function_call"]["arguments"] = arguments
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "mock-model",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        **extra,
    }


def legacy_chunk(text: str, finish_reason: str | None = None) -> dict:
    """Fake legacy completion chunk."""
    return {
        "id": "cmpl-1",
        "object": "text_completion",
        "created": 1700000000,
        "model": "mock-model",
        "choices": [{
            "index": 0,
            "text": text,
            "finish_reason": finish_reason,
            "logprobs": None,
        }],
    }


def text_chunks(*pieces: str) -> list[dict]:
    """Content chunks followed by a ``stop`` terminator."""
    return [chat_chunk(p) for p in pieces] + [chat_chunk(finish_reason="stop")]


def function_call_chunks(name: str, arguments: str, pieces: int = 3) -> list[dict]:
    """A function call whose arguments arrive in *pieces* fragments."""
    size = max(1, -(-len(arguments) // pieces))
    fragments = [arguments[i:i + size] for i in range(0, len(arguments), size)]
    return [
        chat_chunk(role="assistant", name=name, arguments=""),
        *[chat_chunk(arguments=f) for f in fragments],
        chat_chunk(finish_reason="function_call"),
    ]


def sse_body(events: list) -> bytes:
    """Serialize events as a Server-Sent-Events body ending in [DONE]."""
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def sse_response(events: list, split: int = 7) -> httpx.Response:
    """Streaming ``httpx.Response`` whose body arrives in *split*-byte reads."""
    body = sse_body(events)

    async def _reads() -> AsyncIterator[bytes]:
        for i in range(0, len(body), split):
            yield body[i:i + split]

    return httpx.Response(200, content=_reads())


# ---------------------------------------------------------------------------
# Fake upstream
# ---------------------------------------------------------------------------

class FakeUpstream:
    """Async iterable of chunks that records how far it was read and
    whether it was released."""

    def __init__(self, chunks: list):
        self.chunks = list(chunks)
        self.pulled = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or self.pulled >= len(self.chunks):
            raise StopAsyncIteration
        chunk = self.chunks[self.pulled]
        self.pulled += 1
        return chunk

    async def aclose(self):
        self.closed = True


class Recorder:
    """Collects every lifecycle callback in call order."""

    def __init__(self):
        self.calls: list[tuple] = []

    def callbacks(self, on_function_call=None) -> StreamCallbacks:
        return StreamCallbacks(
            on_start=lambda: self.calls.append(("start",)),
            on_token=lambda t: self.calls.append(("token", t)),
            on_completion=lambda t: self.calls.append(("completion", t)),
            on_final=lambda t: self.calls.append(("final", t)),
            on_function_call=on_function_call,
        )

    def named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]


async def collect(stream: AsyncIterator[bytes]) -> list[bytes]:
    return [chunk async for chunk in stream]


@pytest.fixture
def recorder():
    return Recorder()
