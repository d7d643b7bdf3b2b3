"""Reduce decoded frames to the normalized event set.

Each backend family speaks its own JSON dialect inside ``data:`` frames:

* ``openai``      -- ``choices[0].delta.content`` / ``choices[0].finish_reason``
* ``workers-ai``  -- ``{"response": "...", "usage": {...}}`` then ``[DONE]``
* ``google``      -- Gemini ``candidates[0].content.parts[*].text`` with
                     ``finishReason`` and ``usageMetadata``

All of them collapse to ``TextDelta`` / ``Finish`` / ``StreamError``.  No
field is assumed to exist; anything unrecognised produces no event.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from open_chat.errors import FrameParseError
from open_chat.types import (
    Finish,
    FinishReason,
    NormalizedEvent,
    Provider,
    StreamError,
    TextDelta,
    Usage,
    is_terminal,
)

from .frames import Frame

_logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


# ---------------------------------------------------------------------------
# Finish-reason mapping
# ---------------------------------------------------------------------------

_OPENAI_REASONS = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
}

_GEMINI_REASONS = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
    "MALFORMED_FUNCTION_CALL": FinishReason.TOOL_CALLS,
}


def map_openai_finish_reason(reason: Any) -> FinishReason:
    return _OPENAI_REASONS.get(reason, FinishReason.UNKNOWN)


def map_gemini_finish_reason(reason: Any) -> FinishReason:
    return _GEMINI_REASONS.get(reason, FinishReason.UNKNOWN)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def parse_payload(payload: str) -> dict[str, Any]:
    """Decode a frame payload.  Raises ``FrameParseError`` on bad JSON."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise FrameParseError(payload) from e
    if not isinstance(data, dict):
        raise FrameParseError(payload)
    return data


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _openai_usage(raw: Any) -> Usage:
    if not isinstance(raw, dict):
        return Usage()
    return Usage(
        prompt_tokens=_int(raw.get("prompt_tokens")),
        completion_tokens=_int(raw.get("completion_tokens")),
        total_tokens=_int(raw.get("total_tokens")),
    )


def _gemini_usage(raw: Any) -> Usage:
    if not isinstance(raw, dict):
        return Usage()
    return Usage(
        prompt_tokens=_int(raw.get("promptTokenCount")),
        completion_tokens=_int(raw.get("candidatesTokenCount")),
        total_tokens=_int(raw.get("totalTokenCount")),
    )


def _text(container: Any) -> str:
    if not isinstance(container, dict):
        return ""
    content = container.get("content")
    return content if isinstance(content, str) else ""


def _error_message(data: dict[str, Any]) -> str | None:
    """Return the provider's error message, or ``None`` if there is none."""
    error = data.get("error")
    if error:
        if isinstance(error, dict):
            return str(error.get("message") or "API Error")
        if isinstance(error, str):
            return error
        return "API Error"
    # Cloudflare v4 envelope: {"success": false, "errors": [{"message": ...}]}
    errors = data.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict):
            return str(first.get("message") or "API Error")
        return str(first)
    return None


# ---------------------------------------------------------------------------
# EventNormalizer
# ---------------------------------------------------------------------------

class EventNormalizer:
    """Stateful per-stream frame interpreter.

    ``feed()`` returns zero or more events for one frame.  Once a terminal
    event has been returned the normalizer is ``finished`` and ignores all
    further frames.
    """

    def __init__(self, provider: Provider | str) -> None:
        self.provider = Provider(provider)
        self.finished = False
        self._usage: Usage | None = None
        self._in_thought = False
        self._parse = {
            Provider.OPENAI: self._openai_events,
            Provider.WORKERS_AI: self._workers_events,
            Provider.GOOGLE: self._gemini_events,
        }[self.provider]

    def feed(self, frame: Frame) -> list[NormalizedEvent]:
        if self.finished:
            return []

        if frame.is_done:
            events: list[NormalizedEvent] = self._close_thought()
            events.append(Finish(FinishReason.STOP, self._usage or Usage()))
        else:
            try:
                data = parse_payload(frame.payload)
            except FrameParseError as e:
                _logger.debug("Skipping frame: %s", e)
                return []
            message = _error_message(data)
            if message is not None:
                _logger.warning("Upstream %s error: %s", self.provider.value, message)
                events = [StreamError(message)]
            else:
                events = self._parse(data)

        out: list[NormalizedEvent] = []
        for event in events:
            out.append(event)
            if is_terminal(event):
                self.finished = True
                break
        return out

    # ------------------------------------------------------------------
    # OpenAI-compatible
    # ------------------------------------------------------------------

    def _openai_events(self, data: dict[str, Any]) -> list[NormalizedEvent]:
        choices = data.get("choices")

        if isinstance(choices, list) and choices:
            choice = choices[0] if isinstance(choices[0], dict) else {}
            events: list[NormalizedEvent] = []
            text = _text(choice.get("delta")) or _text(choice.get("message"))
            if text:
                events.append(TextDelta(text))
            reason = choice.get("finish_reason")
            if reason:
                events.append(Finish(
                    map_openai_finish_reason(reason),
                    _openai_usage(data.get("usage")),
                ))
            return events

        # Some providers flatten the delta to the top level
        if "choices" in data and not choices:
            content = data.get("content")
            if isinstance(content, str) and content:
                return [TextDelta(content)]

        return []

    # ------------------------------------------------------------------
    # Workers AI native
    # ------------------------------------------------------------------

    def _workers_events(self, data: dict[str, Any]) -> list[NormalizedEvent]:
        if "choices" in data:
            return self._openai_events(data)

        usage = data.get("usage")
        if isinstance(usage, dict):
            # Reported on the last frame before [DONE]
            self._usage = _openai_usage(usage)

        text = data.get("response")
        if isinstance(text, str) and text:
            return [TextDelta(text)]
        return []

    # ------------------------------------------------------------------
    # Gemini (gateway-routed)
    # ------------------------------------------------------------------

    def _gemini_events(self, data: dict[str, Any]) -> list[NormalizedEvent]:
        usage = _gemini_usage(data.get("usageMetadata"))
        candidates = data.get("candidates")

        if not isinstance(candidates, list) or not candidates:
            feedback = data.get("promptFeedback")
            if isinstance(feedback, dict) and feedback.get("blockReason"):
                return [Finish(FinishReason.CONTENT_FILTER, usage)]
            return []

        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None

        pieces: list[str] = []
        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if not isinstance(text, str) or not text:
                continue
            # Thought summaries travel in-band, like <think> models
            if part.get("thought"):
                if not self._in_thought:
                    pieces.append(THINK_OPEN)
                    self._in_thought = True
            elif self._in_thought:
                pieces.append(THINK_CLOSE)
                self._in_thought = False
            pieces.append(text)

        events: list[NormalizedEvent] = []
        if pieces:
            events.append(TextDelta("".join(pieces)))

        reason = candidate.get("finishReason")
        if reason:
            events.extend(self._close_thought())
            events.append(Finish(map_gemini_finish_reason(reason), usage))
        return events

    def _close_thought(self) -> list[NormalizedEvent]:
        if not self._in_thought:
            return []
        self._in_thought = False
        return [TextDelta(THINK_CLOSE)]
