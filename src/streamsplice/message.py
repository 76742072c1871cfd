import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


class FunctionCall(BaseModel):
    name: str | None = None
    arguments: str | None = None


class Message(BaseModel):
    role: MessageRole
    content: str
    name: str | None = None
    function_call: FunctionCall | None = None

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    def to_request(self) -> dict:
        """Dump the message the way the chat completions API expects it."""
        return self.model_dump(exclude_none=True)


def build_function_call_messages(
    pending: list[Message],
    function_call: FunctionCall,
    result: Any,
) -> list[Message]:
    """Append the assistant call and its function result to *pending*.

    The returned list is a new list; *pending* is left untouched so the
    same call can be answered more than once by a handler.
    """
    return [
        *pending,
        Message(
            role=MessageRole.ASSISTANT,
            content="",
            function_call=function_call,
        ),
        Message(
            role=MessageRole.FUNCTION,
            name=function_call.name,
            content=json.dumps(result),
        ),
    ]
