"""Split assistant text into plain-text and reasoning segments.

Reasoning arrives in-band as ``<think>...</think>``.  ``segment()`` is run
against the whole accumulated text on every render, so it is a pure function
of its input: no state, safe to repeat on a growing buffer.

An opening tag that has not been closed yet is left as literal text.  The
reasoning part appears only once the closing tag has arrived.
"""

from __future__ import annotations

import re

from open_chat.types import DisplayPart, MessagePart, ReasoningPart, TextPart

_THINK_PATTERN = re.compile(r"<think>(.*?)</think>", re.DOTALL)


def segment(text: str) -> list[DisplayPart]:
    """Return text/reasoning parts in order of appearance.

    ``"before<think>inner</think>after"`` yields ``text("before")``,
    ``reasoning("inner")``, ``text("after")``.  Empty gaps are omitted and
    reasoning content is stripped of surrounding whitespace.
    """
    parts: list[DisplayPart] = []
    last = 0
    for match in _THINK_PATTERN.finditer(text):
        if match.start() > last:
            parts.append(TextPart(text=text[last:match.start()]))
        parts.append(ReasoningPart(text=match.group(1).strip(), state="done"))
        last = match.end()
    if last < len(text):
        parts.append(TextPart(text=text[last:]))
    return parts


def join_segments(parts: list[DisplayPart]) -> str:
    """Rebuild tagged text from segments (inverse of ``segment`` up to trimming)."""
    out: list[str] = []
    for part in parts:
        if isinstance(part, ReasoningPart):
            out.append(f"<think>{part.text}</think>")
        else:
            out.append(part.text)
    return "".join(out)


def display_parts(parts: list[MessagePart]) -> list[MessagePart]:
    """Segment every text part of a stored message; other parts pass through."""
    out: list[MessagePart] = []
    for part in parts:
        if isinstance(part, TextPart):
            out.extend(segment(part.text))
        else:
            out.append(part)
    return out
