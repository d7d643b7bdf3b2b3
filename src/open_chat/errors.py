"""Error taxonomy for the chat streaming path.

Only ``FrameParseError`` is recovered locally (the offending frame is
skipped).  Every other error ends the current turn exactly once and is never
retried automatically; the user regenerates explicitly.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all Open Chat errors."""


class TransportError(ChatError):
    """Non-2xx response or missing body at an HTTP boundary."""

    def __init__(self, message: str, status: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class AuthError(TransportError):
    """Missing or invalid credential (HTTP 401)."""

    def __init__(self, message: str = "Unauthorized", status: int = 401, body: str = "") -> None:
        super().__init__(message, status=status, body=body)


class FrameParseError(ChatError):
    """A single frame payload could not be decoded as JSON."""

    def __init__(self, payload: str) -> None:
        super().__init__(f"invalid frame payload: {payload[:120]!r}")
        self.payload = payload


class UpstreamError(ChatError):
    """The provider reported an error inside an otherwise valid stream."""


class CancellationError(ChatError):
    """The consumer aborted the stream.  Not a failure."""
