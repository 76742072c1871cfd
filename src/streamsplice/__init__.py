from streamsplice.callbacks import FunctionCallPayload, StreamCallbacks
from streamsplice.dispatch import (
    ChatStreamPayload,
    HTTPDispatcher,
    OpenAIDispatcher,
    create_chat_completion,
)
from streamsplice.envelope import OutputMode, StreamData
from streamsplice.instrumentation import instrument, uninstrument
from streamsplice.message import Message, MessageRole
from streamsplice.pipeline import stream_completion

__all__ = [
    "ChatStreamPayload",
    "FunctionCallPayload",
    "HTTPDispatcher",
    "Message",
    "MessageRole",
    "OpenAIDispatcher",
    "OutputMode",
    "StreamCallbacks",
    "StreamData",
    "create_chat_completion",
    "instrument",
    "stream_completion",
    "uninstrument",
]
