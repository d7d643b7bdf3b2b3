"""Shared data types for Open Chat."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Union


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

CANONICAL_ROLES = ("system", "user", "assistant")


def normalize_role(role: Any) -> str:
    """Map any role outside ``system``/``user``/``assistant`` to ``user``.

    Upstream APIs reject unknown roles (``developer`` in particular), so
    this runs on every message before it crosses a boundary.
    """
    if role in CANONICAL_ROLES:
        return role
    return "user"


def generate_id() -> str:
    return uuid.uuid4().hex[:16]


# ---------------------------------------------------------------------------
# Message parts
# ---------------------------------------------------------------------------

@dataclass
class TextPart:
    """Plain answer text."""

    text: str = ""
    type: str = field(default="text", init=False)


@dataclass
class ReasoningPart:
    """Reasoning span extracted from ``<think>`` tags."""

    text: str = ""
    state: str = "done"  # "streaming" | "done"
    type: str = field(default="reasoning", init=False)


@dataclass
class FilePart:
    """Attached file or image, referenced by URL (often a data: URL)."""

    media_type: str = ""
    filename: str = ""
    url: str = ""
    type: str = field(default="file", init=False)


MessagePart = Union[TextPart, ReasoningPart, FilePart]
DisplayPart = Union[TextPart, ReasoningPart]


def part_to_dict(part: MessagePart) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ReasoningPart):
        return {"type": "reasoning", "text": part.text, "state": part.state}
    return {
        "type": "file",
        "mediaType": part.media_type,
        "filename": part.filename,
        "url": part.url,
    }


def part_from_dict(raw: dict[str, Any]) -> MessagePart | None:
    """Parse a wire/storage part dict.  Unknown part types yield ``None``."""
    kind = raw.get("type")
    if kind == "text":
        return TextPart(text=raw.get("text") or "")
    if kind == "reasoning":
        return ReasoningPart(text=raw.get("text") or "", state=raw.get("state", "done"))
    if kind == "file":
        return FilePart(
            media_type=raw.get("mediaType") or raw.get("media_type") or "",
            filename=raw.get("filename") or "",
            url=raw.get("url") or "",
        )
    return None


# ---------------------------------------------------------------------------
# Messages and sessions
# ---------------------------------------------------------------------------

@dataclass
class Message:
    """A chat message as an ordered sequence of typed parts."""

    role: str
    parts: list[MessagePart] = field(default_factory=list)
    session_id: str = ""
    id: str = field(default_factory=generate_id)
    created_at: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.role = normalize_role(self.role)

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "parts": [part_to_dict(p) for p in self.parts],
            "sessionId": self.session_id,
            "createdAt": self.created_at,
            "metadata": self.metadata,
        }

    def to_wire(self) -> dict[str, Any]:
        """The ``{role, parts}`` shape posted to the chat endpoint."""
        return {"role": self.role, "parts": [part_to_dict(p) for p in self.parts]}


@dataclass
class Session:
    id: str = field(default_factory=generate_id)
    name: str = "New chat"
    updated_at: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Normalized stream events
# ---------------------------------------------------------------------------

class FinishReason(str, enum.Enum):
    """Canonical reasons a model stopped generating."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    TOOL_CALLS = "tool-calls"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class TextDelta:
    text_delta: str
    type: str = field(default="text-delta", init=False)


@dataclass(frozen=True)
class Finish:
    reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)
    type: str = field(default="finish", init=False)


@dataclass(frozen=True)
class StreamError:
    message: str
    type: str = field(default="error", init=False)


NormalizedEvent = Union[TextDelta, Finish, StreamError]


def is_terminal(event: NormalizedEvent) -> bool:
    return isinstance(event, (Finish, StreamError))


# ---------------------------------------------------------------------------
# Requests and catalog entries
# ---------------------------------------------------------------------------

class Provider(str, enum.Enum):
    """Backend families an upstream adapter exists for."""

    OPENAI = "openai"
    WORKERS_AI = "workers-ai"
    GOOGLE = "google"


@dataclass(frozen=True)
class ChatRequest:
    """Everything needed for one chat turn.  Built fresh per turn."""

    messages: tuple[Message, ...]
    model: str
    provider: Provider = Provider.OPENAI
    search_enabled: bool = False
    tools: tuple[dict[str, Any], ...] = ()


@dataclass
class Model:
    """A selectable model as listed by the catalog."""

    id: str
    name: str
    provider: str = "openai"
    type: str = "Text Generation"
    input: list[str] | None = None
    tag: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "provider": self.provider,
        }
        if self.input:
            data["input"] = list(self.input)
        if self.tag:
            data["tag"] = list(self.tag)
        return data


# ---------------------------------------------------------------------------
# UI event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Events the client consumer publishes for UI refresh and persistence."""

    MESSAGE_CREATED = "message.created"
    MESSAGE_DELTA = "message.delta"
    MESSAGE_DONE = "message.done"
    MESSAGE_FAILED = "message.failed"
    MESSAGE_CANCELLED = "message.cancelled"
    AUTH_REQUIRED = "auth.required"


@dataclass
class ChatEvent:
    """Event emitted by the client consumer via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
