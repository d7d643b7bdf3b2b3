"""HTTP endpoint: ``POST /api/chat`` (SSE) and ``GET /api/models``.

The outbound stream is deliberately simpler than any upstream format::

    data: {"content": "..."}      one per text delta
    data: {"error": "..."}        upstream failed after streaming began
    data: {"done": true, ...}     always last

A client disconnect cancels the response generator, whose ``finally``
closes the upstream connection.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import PlainTextResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict

from open_chat.catalog import fetch_models
from open_chat.config import ChatConfig
from open_chat.errors import AuthError
from open_chat.transport import ChatTransport, EventStream
from open_chat.types import (
    ChatRequest,
    Finish,
    Message,
    MessagePart,
    Provider,
    StreamError,
    TextDelta,
    TextPart,
    part_from_dict,
)

_logger = logging.getLogger(__name__)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class PartBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None
    mediaType: str | None = None
    filename: str | None = None
    url: str | None = None


class MessageBody(BaseModel):
    role: str = "user"
    parts: list[PartBody] = []
    content: str | None = None


class ChatBody(BaseModel):
    messages: list[MessageBody]
    model: str | None = None
    provider: str | None = None
    search: bool = False
    tools: list[dict[str, Any]] | None = None


def to_message(body: MessageBody) -> Message:
    """Build a domain ``Message``; the role is normalized on construction."""
    parts: list[MessagePart] = []
    for raw in body.parts:
        part = part_from_dict(raw.model_dump(exclude_none=True))
        if part is not None:
            parts.append(part)
    if body.content and not any(isinstance(p, TextPart) for p in parts):
        parts.append(TextPart(text=body.content))
    return Message(role=body.role, parts=parts)


def sse(data: dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


async def relay(stream: EventStream) -> AsyncIterator[str]:
    """Re-serialize normalized events for the client."""
    done: dict[str, Any] = {"done": True}
    try:
        async for event in stream:
            if isinstance(event, TextDelta):
                yield sse({"content": event.text_delta})
            elif isinstance(event, Finish):
                done["finishReason"] = event.reason.value
                done["usage"] = {
                    "promptTokens": event.usage.prompt_tokens,
                    "completionTokens": event.usage.completion_tokens,
                    "totalTokens": event.usage.total_tokens,
                }
            elif isinstance(event, StreamError):
                yield sse({"error": event.message})
        yield sse(done)
    finally:
        await stream.aclose()


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    config: ChatConfig,
    transport: ChatTransport | None = None,
) -> FastAPI:
    """Build the FastAPI app.  *transport* is injectable for tests."""
    transport = transport or ChatTransport(config)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await transport.aclose()

    app = FastAPI(title="Open Chat", lifespan=lifespan)
    app.state.config = config
    app.state.transport = transport

    def require_password(authorization: str | None = Header(default=None)) -> None:
        if config.password and authorization != config.password:
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.post("/api/chat", dependencies=[Depends(require_password)])
    async def chat(body: ChatBody):
        try:
            provider = Provider(body.provider or config.default_provider)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown provider: {body.provider}")

        messages = tuple(to_message(m) for m in body.messages)
        if config.window > 0:
            messages = messages[-config.window:]
        request = ChatRequest(
            messages=messages,
            model=body.model or config.default_model,
            provider=provider,
            search_enabled=body.search,
            tools=tuple(body.tools or ()),
        )

        try:
            stream = await transport.dispatch(request)
        except AuthError as e:
            _logger.warning("Upstream %s rejected credentials", provider.value)
            return PlainTextResponse(str(e), status_code=401)

        if stream.opening_error is not None:
            await stream.aclose()
            return PlainTextResponse(stream.opening_error.message, status_code=502)

        return StreamingResponse(
            relay(stream),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    @app.get("/api/models")
    async def models():
        return [m.to_dict() for m in await fetch_models(config)]

    return app
