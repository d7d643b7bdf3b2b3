"""Upstream adapter interface.

An adapter turns a ``ChatRequest`` into one provider-specific HTTP call.  It
never touches the network itself: ``ChatTransport`` sends the call, decodes
the frames and feeds them to an ``EventNormalizer`` for the same provider.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from open_chat.config import ProviderSpec
from open_chat.stream.segmenter import segment
from open_chat.types import (
    ChatRequest,
    FilePart,
    Message,
    Provider,
    ReasoningPart,
    TextPart,
    normalize_role,
)

_logger = logging.getLogger(__name__)


@dataclass
class UpstreamCall:
    """A fully shaped upstream HTTP request."""

    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    method: str = "POST"


class UpstreamAdapter(ABC):
    """Request-shaping strategy for one backend family."""

    provider: Provider

    def __init__(self, spec: ProviderSpec, system_prompt: str = "") -> None:
        self.spec = spec
        self.system_prompt = system_prompt

    @abstractmethod
    def build_call(self, request: ChatRequest) -> UpstreamCall:
        """Shape *request* into this provider's streaming HTTP call."""

    def starts_with_reasoning(self, model: str) -> bool:
        """Whether *model* emits reasoning before any ``<think>`` tag."""
        return model in self.spec.reasoning_models

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _sse_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }

    def _generation_option(self, name: str, default: Any) -> Any:
        value = getattr(self.spec, name)
        return default if value is None else value


def message_text(message: Message) -> str:
    """Flatten a message to plain text.

    Reasoning is dropped from assistant turns: the model sees its earlier
    answers, not its earlier thinking.
    """
    chunks: list[str] = []
    for part in message.parts:
        if not isinstance(part, TextPart):
            continue
        if normalize_role(message.role) == "assistant":
            chunks.extend(
                p.text for p in segment(part.text) if not isinstance(p, ReasoningPart)
            )
        else:
            chunks.append(part.text)
    return "".join(chunks).strip()


def image_parts(message: Message) -> list[FilePart]:
    return [
        p for p in message.parts
        if isinstance(p, FilePart) and p.media_type.startswith("image/") and p.url
    ]
