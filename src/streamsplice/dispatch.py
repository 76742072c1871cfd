"""Upstream request dispatch and the service boundary around it.

A dispatcher turns a :class:`ChatStreamPayload` into a live event source
or raises.  :func:`create_chat_completion` is the boundary: dispatch
failures are classified into an :class:`ErrorEnvelope` and returned as an
:class:`ErrorResponse`, never raised.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

import httpx
from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ConfigDict

from streamsplice.callbacks import StreamCallbacks
from streamsplice.config import Settings
from streamsplice.envelope import OutputMode, StreamData
from streamsplice.errors import UpstreamResponseError
from streamsplice.instrumentation import dispatch_span, record_error
from streamsplice.message import Message
from streamsplice.pipeline import stream_completion
from streamsplice.response import (
    ChatErrorType,
    ErrorEnvelope,
    ErrorResponse,
    StreamingTextResponse,
    create_error_response,
)
from streamsplice.source import EventSource

logger = logging.getLogger(__name__)


class ChatStreamPayload(BaseModel):
    """Request body for a streamed chat completion.

    Extra provider parameters (``functions``, ``top_p``...) are passed
    through unchanged.  ``stream`` is always sent as ``True``.
    """

    model_config = ConfigDict(extra="allow")

    messages: list[Message]
    model: str
    temperature: float | None = None

    def to_request(self) -> dict:
        request = self.model_dump(exclude_none=True)
        request["stream"] = True
        return request

    def with_messages(self, messages: list[Message]) -> ChatStreamPayload:
        return self.model_copy(update={"messages": list(messages)})


class Dispatcher(Protocol):
    endpoint: str

    async def dispatch(self, payload: ChatStreamPayload) -> EventSource:
        ...


class OpenAIDispatcher:
    """Dispatches through the official ``openai`` async client."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 600.0,
        max_retries: int = 0,
        client: AsyncOpenAI | None = None,
    ):
        if client is None:
            if not api_key:
                api_key = os.getenv("OPENAI_API_KEY")
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                max_retries=max_retries,
                timeout=timeout,
            )
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAIDispatcher:
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
        )

    @property
    def endpoint(self) -> str:
        return str(self.client.base_url)

    async def dispatch(self, payload: ChatStreamPayload) -> EventSource:
        async with dispatch_span(self.endpoint, payload.model) as span:
            try:
                return await self.client.chat.completions.create(
                    **payload.to_request(),
                    extra_headers={"Accept": "*/*"},
                )
            except Exception as e:
                record_error(span, e)
                raise


class HTTPDispatcher:
    """Posts to any OpenAI-compatible endpoint and returns the SSE response."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        """Close the HTTP client if this dispatcher created it."""
        if self._owns_client:
            await self.client.aclose()

    async def dispatch(self, payload: ChatStreamPayload) -> EventSource:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        request = self.client.build_request(
            "POST", self.endpoint, json=payload.to_request(), headers=headers,
        )
        async with dispatch_span(self.endpoint, payload.model) as span:
            response = await self.client.send(request, stream=True)
            if response.is_error:
                await response.aread()
                await response.aclose()
                try:
                    body = response.json()
                except json.JSONDecodeError:
                    body = response.text
                error = UpstreamResponseError(response.status_code, body)
                record_error(span, error)
                raise error
            return response


def _api_error_detail(error: APIError) -> Any:
    if error.body is not None:
        return error.body
    if error.__cause__ is not None:
        return repr(error.__cause__)
    # A response-like error with nothing else to report.
    response = getattr(error, "response", None)
    return {
        "headers": dict(response.headers) if response is not None else {},
        "status": getattr(error, "status_code", None),
    }


def classify_dispatch_error(error: Exception, endpoint: str) -> ErrorEnvelope:
    """Map a dispatch failure onto the stable error taxonomy."""
    if isinstance(error, APIError):
        detail = _api_error_detail(error)
        logger.error(f"Provider error from {endpoint}: {detail}")
        return ErrorEnvelope(
            error_type=ChatErrorType.OPENAI_BIZ_ERROR,
            endpoint=endpoint,
            error=detail,
        )
    if isinstance(error, UpstreamResponseError):
        logger.error(f"Provider error from {endpoint}: {error.body}")
        return ErrorEnvelope(
            error_type=ChatErrorType.OPENAI_BIZ_ERROR,
            endpoint=endpoint,
            error=error.body,
        )
    logger.error(f"Dispatch to {endpoint} failed: {error!r}")
    return ErrorEnvelope(
        error_type=ChatErrorType.INTERNAL_SERVER_ERROR,
        endpoint=endpoint,
        error=repr(error),
    )


async def create_chat_completion(
    payload: ChatStreamPayload,
    dispatcher: Dispatcher,
    callbacks: StreamCallbacks | None = None,
    *,
    mode: OutputMode | None = None,
    data: StreamData | None = None,
    settings: Settings | None = None,
) -> StreamingTextResponse | ErrorResponse:
    """Dispatch *payload* and wrap the result for the caller.

    Returns a streaming response on success and an error response on
    any dispatch failure.  Nothing is retried.  ``mode`` falls back to
    ``settings.output_mode``, then to raw text.  Function-call handlers
    get a ``build_messages`` that starts from ``payload.messages``.
    """
    if mode is None:
        mode = settings.output_mode if settings is not None else OutputMode.RAW
    try:
        source = await dispatcher.dispatch(payload)
    except Exception as e:
        return create_error_response(classify_dispatch_error(e, dispatcher.endpoint))
    body = stream_completion(
        source, callbacks, mode=mode, data=data, messages=payload.messages,
    )
    return StreamingTextResponse.create(body, data=data)
