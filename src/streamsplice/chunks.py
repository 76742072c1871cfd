"""Provider chunk shapes and the classifier that tells them apart.

A provider stream is made of either chat-style chunks (``choices[0].delta``)
or legacy completion chunks (``choices[0].text``), never both.  The two
shapes form a closed union; :func:`classify_chunk` inspects the decoded
event once and returns the shape tag with a typed view.

Chunks are plain dataclasses rather than pydantic models: argument
fragments can carry half of a surrogate pair, which pydantic refuses to
validate as a string.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel

from streamsplice.errors import ChunkClassificationError


class ChunkKind(Enum):
    CHAT = "chat"
    LEGACY = "legacy"


@dataclass
class FunctionCallFragment:
    """Part of a streamed function call. ``arguments`` is partial JSON."""

    name: str | None = None
    arguments: str | None = None


@dataclass
class ChoiceDelta:
    content: str | None = None
    function_call: FunctionCallFragment | None = None
    role: str | None = None


@dataclass
class ChatChoice:
    delta: ChoiceDelta
    finish_reason: str | None = None
    index: int = 0


@dataclass
class LegacyChoice:
    text: str
    finish_reason: str | None = None
    index: int = 0
    logprobs: Any = None


@dataclass
class ChatChunk:
    choices: list[ChatChoice]
    id: str = ""
    created: int = 0
    model: str = ""
    # Some proxies leak conversation metadata onto every chunk.
    conversation_id: str | None = None
    parent_message_id: str | None = None


@dataclass
class LegacyChunk:
    choices: list[LegacyChoice]
    id: str = ""
    created: int = 0
    model: str = ""
    conversation_id: str | None = None
    parent_message_id: str | None = None


@dataclass(frozen=True)
class ClassifiedChunk:
    """A provider chunk tagged with its shape."""

    kind: ChunkKind
    chunk: ChatChunk | LegacyChunk

    @property
    def finish_reason(self) -> str | None:
        return self.chunk.choices[0].finish_reason

    @property
    def function_call(self) -> FunctionCallFragment | None:
        match self.kind:
            case ChunkKind.CHAT:
                return self.chunk.choices[0].delta.function_call
            case ChunkKind.LEGACY:
                return None

    @property
    def content(self) -> str | None:
        match self.kind:
            case ChunkKind.CHAT:
                return self.chunk.choices[0].delta.content
            case ChunkKind.LEGACY:
                return self.chunk.choices[0].text


def _field(data: dict, key: str, types: type | tuple, default: Any = None) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, types):
        raise ChunkClassificationError(
            f"field {key!r} has unexpected type {type(value).__name__}"
        )
    return value


def _parse_function_call(data: Any) -> FunctionCallFragment | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ChunkClassificationError("function_call is not an object")
    return FunctionCallFragment(
        name=_field(data, "name", str),
        arguments=_field(data, "arguments", str),
    )


def _parse_chat_choice(data: Any) -> ChatChoice:
    if not isinstance(data, dict):
        raise ChunkClassificationError("choice is not an object")
    delta = _field(data, "delta", dict, default={})
    return ChatChoice(
        delta=ChoiceDelta(
            content=_field(delta, "content", str),
            function_call=_parse_function_call(delta.get("function_call")),
            role=_field(delta, "role", str),
        ),
        finish_reason=_field(data, "finish_reason", str),
        index=_field(data, "index", int, default=0),
    )


def _parse_legacy_choice(data: Any) -> LegacyChoice:
    if not isinstance(data, dict):
        raise ChunkClassificationError("choice is not an object")
    text = data.get("text")
    if not isinstance(text, str):
        raise ChunkClassificationError("legacy choice text is not a string")
    return LegacyChoice(
        text=text,
        finish_reason=_field(data, "finish_reason", str),
        index=_field(data, "index", int, default=0),
        logprobs=data.get("logprobs"),
    )


def decode_chunk(data: Any) -> dict:
    """Turn a raw event (dict, JSON text or pydantic model) into a dict."""
    if isinstance(data, BaseModel):
        return data.model_dump()
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ChunkClassificationError(
                f"event is not valid JSON: {e}"
            ) from e
    if not isinstance(data, dict):
        raise ChunkClassificationError(
            f"event must decode to an object, got {type(data).__name__}"
        )
    return data


def chunk_kind(data: dict) -> ChunkKind:
    """Return the shape tag of a decoded event or raise."""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ChunkClassificationError("event has no choices")
    first = choices[0]
    if not isinstance(first, dict):
        raise ChunkClassificationError("first choice is not an object")
    if "delta" in first:
        return ChunkKind.CHAT
    if "text" in first:
        return ChunkKind.LEGACY
    raise ChunkClassificationError(
        f"unrecognised chunk shape with keys {sorted(first)}"
    )


def classify_chunk(data: Any) -> ClassifiedChunk:
    """Classify one provider event as a chat or legacy chunk.

    Raises:
        ChunkClassificationError: If the event matches neither shape.
    """
    decoded = decode_chunk(data)
    kind = chunk_kind(decoded)
    common = dict(
        id=_field(decoded, "id", str, default=""),
        created=_field(decoded, "created", int, default=0),
        model=_field(decoded, "model", str, default=""),
        conversation_id=_field(decoded, "conversation_id", str),
        parent_message_id=_field(decoded, "parent_message_id", str),
    )
    match kind:
        case ChunkKind.CHAT:
            chunk = ChatChunk(
                choices=[_parse_chat_choice(c) for c in decoded["choices"]],
                **common,
            )
        case ChunkKind.LEGACY:
            chunk = LegacyChunk(
                choices=[_parse_legacy_choice(c) for c in decoded["choices"]],
                **common,
            )
    return ClassifiedChunk(kind=kind, chunk=chunk)
