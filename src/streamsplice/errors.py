"""Exceptions raised by streamsplice."""


class StreamSpliceError(Exception):
    """Base class for all streamsplice errors."""


class ChunkClassificationError(StreamSpliceError):
    """An upstream event matched neither the chat nor the legacy shape.

    Fatal for the stream it occurred in.
    """


class MalformedFunctionCallError(StreamSpliceError):
    """Buffered function-call text did not parse into a name and arguments."""


class UpstreamResponseError(StreamSpliceError):
    """The upstream HTTP response was an error instead of an event stream.

    Args:
        status_code: HTTP status returned by the provider.
        body: Decoded JSON error body, or the raw text when it is not JSON.
    """

    def __init__(self, status_code: int, body):
        super().__init__(f"upstream responded with status {status_code}")
        self.status_code = status_code
        self.body = body
