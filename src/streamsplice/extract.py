"""Linearize classified chunks into a single text stream.

Plain content passes through as text.  A streamed function call is
rewritten into an inline JSON object literal::

    {"function_call": {"name": "lookup", "arguments": "{\\"q\\": 1}"}}

whose ``arguments`` value is built from escaped argument fragments as
they arrive, so the concatenated text parses as JSON once the call ends.
"""

from __future__ import annotations

import re

from streamsplice.chunks import ClassifiedChunk

FUNCTION_CALL_PREFIX = '{"function_call":'
FUNCTION_CALL_CLOSE = '"}}'

# Order matters: backslashes first so later escapes are not doubled.
_ESCAPES = (
    ("\\", "\\\\"),
    ("/", "\\/"),
    ('"', '\\"'),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\t", "\\t"),
    ("\f", "\\f"),
)
_REMAINING_UNSAFE = re.compile("[\x00-\x1f\ud800-\udfff]")


def escape_json_fragment(text: str) -> str:
    """Escape *text* for inclusion inside a JSON string literal.

    Works on partial input: no quotes are added, and the result of
    escaping two halves equals the escape of the whole.
    """
    for raw, escaped in _ESCAPES:
        text = text.replace(raw, escaped)
    return _REMAINING_UNSAFE.sub(lambda m: f"\\u{ord(m.group()):04x}", text)


def _is_high_surrogate(char: str) -> bool:
    return "\ud800" <= char <= "\udbff"


def _join_surrogates(text: str) -> str:
    return text.encode("utf-16", "surrogatepass").decode("utf-16", "surrogatepass")


class StartOfStreamTrimmer:
    """Strip leading whitespace until the first non-empty text is seen."""

    def __init__(self) -> None:
        self._at_start = True

    def __call__(self, text: str) -> str:
        if self._at_start:
            text = text.lstrip()
            if text:
                self._at_start = False
        return text


class TextExtractor:
    """Per-stream extractor turning classified chunks into text.

    Holds the start-of-stream trimmer and the function-call flag, so one
    instance must not be shared between streams.
    """

    def __init__(self) -> None:
        self._trim = StartOfStreamTrimmer()
        self.is_function_streaming_in = False
        self._name_seen = False
        # A high surrogate whose low half has not arrived yet.
        self._held = ""

    def extract(self, classified: ClassifiedChunk) -> str:
        function_call = classified.function_call

        if function_call is not None and function_call.name and not self._name_seen:
            self.is_function_streaming_in = True
            self._name_seen = True
            name = escape_json_fragment(function_call.name)
            opener = f'{{"function_call": {{"name": "{name}", "arguments": "'
            return opener + self._arguments(function_call.arguments or "")

        if function_call is not None and function_call.arguments:
            return self._arguments(function_call.arguments)

        if self.is_function_streaming_in and classified.finish_reason in (
            "function_call",
            "stop",
        ):
            self.is_function_streaming_in = False
            self._name_seen = False
            return self.flush() + FUNCTION_CALL_CLOSE

        content = classified.content or ""
        chunk = classified.chunk
        if chunk.conversation_id and chunk.parent_message_id:
            content = (
                f'{content} {{"conversation_id":"{chunk.conversation_id}",'
                f'"parent_message_id":"{chunk.parent_message_id}"}}'
            )
        return self._trim(content)

    def flush(self) -> str:
        """Release any held surrogate, escaped on its own."""
        held, self._held = self._held, ""
        return escape_json_fragment(held)

    def _arguments(self, fragment: str) -> str:
        fragment = self._held + fragment
        self._held = ""
        if fragment and _is_high_surrogate(fragment[-1]):
            fragment, self._held = fragment[:-1], fragment[-1]
        return escape_json_fragment(_join_surrogates(fragment))
