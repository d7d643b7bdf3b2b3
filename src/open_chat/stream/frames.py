"""Server-sent-event frame decoding.

``FrameDecoder`` is a synchronous transform: the caller hands it byte chunks
exactly as they come off the network (arbitrary boundaries, possibly cutting
a UTF-8 sequence or a line in half) and receives the complete ``data:``
frames those bytes finish.  Anything after the last newline stays buffered
until the next ``feed()`` or ``flush()``.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass

_logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

_DATA_PREFIX = "data:"


@dataclass(frozen=True)
class Frame:
    """One ``data:`` record.  ``payload`` is the text after the prefix."""

    payload: str

    @property
    def is_done(self) -> bool:
        """True for the ``[DONE]`` sentinel, which is not JSON."""
        return self.payload.strip() == DONE_SENTINEL


class FrameDecoder:
    """Split a chunked byte stream into ``data:`` frames."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[Frame]:
        """Consume *chunk*; return the frames completed by it, in order."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._frames(lines)

    def flush(self) -> list[Frame]:
        """Emit whatever is left once the upstream has closed."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail:
            return []
        return self._frames(tail.split("\n"))

    @property
    def pending(self) -> str:
        """Buffered text of the incomplete trailing line."""
        return self._buffer

    def _frames(self, lines: list[str]) -> list[Frame]:
        frames: list[Frame] = []
        for line in lines:
            frame = _parse_line(line)
            if frame is not None:
                frames.append(frame)
        return frames


def _parse_line(line: str) -> Frame | None:
    line = line.rstrip("\r")
    # blank separators, event:/id:/retry: fields and ":" comments
    if not line.startswith(_DATA_PREFIX):
        return None
    payload = line[len(_DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    if not payload.strip():
        _logger.debug("Skipping empty data line")
        return None
    return Frame(payload)
