"""Responses handed back across the service boundary."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from streamsplice.envelope import StreamData


class ChatErrorType(str, Enum):
    OPENAI_BIZ_ERROR = "OpenAIBizError"
    INTERNAL_SERVER_ERROR = "InternalServerError"


# 577 marks a provider business error, distinct from our own 5xx.
ERROR_STATUS = {
    ChatErrorType.OPENAI_BIZ_ERROR: 577,
    ChatErrorType.INTERNAL_SERVER_ERROR: 500,
}


class ErrorEnvelope(BaseModel):
    error_type: ChatErrorType
    endpoint: str
    error: Any = None

    def to_body(self) -> dict:
        return {
            "errorType": self.error_type.value,
            "body": {"endpoint": self.endpoint, "error": self.error},
        }


@dataclass
class ErrorResponse:
    envelope: ErrorEnvelope
    status: int
    headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "application/json"}
    )

    @property
    def body(self) -> bytes:
        return json.dumps(self.envelope.to_body(), default=str).encode("utf-8")


@dataclass
class StreamingTextResponse:
    """A streaming body plus the headers a client needs to decode it."""

    body: AsyncIterator[bytes]
    status: int = 200
    headers: dict[str, str] = field(
        default_factory=lambda: {"Content-Type": "text/plain; charset=utf-8"}
    )

    @classmethod
    def create(
        cls, body: AsyncIterator[bytes], data: StreamData | None = None
    ) -> StreamingTextResponse:
        response = cls(body=body)
        if data is not None:
            response.headers["X-Experimental-Stream-Data"] = "true"
        return response

    async def read(self) -> bytes:
        """Drain the whole body. Mostly useful in tests."""
        return b"".join([chunk async for chunk in self.body])


def create_error_response(envelope: ErrorEnvelope) -> ErrorResponse:
    return ErrorResponse(envelope=envelope, status=ERROR_STATUS[envelope.error_type])
