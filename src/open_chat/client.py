"""Client-side stream consumer.

``ChatClient`` posts a turn to the chat endpoint, reads the outbound SSE
stream and grows the assistant ``Message`` in place through a
``MessageAssembler``.  Every change is published on the ``EventBus`` so a
UI can re-render (re-running ``segment()`` over the whole text), and the
message is persisted once the stream is done.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import httpx

from open_chat.catalog import DEFAULT_MODELS
from open_chat.config import ChatConfig
from open_chat.errors import (
    AuthError,
    CancellationError,
    FrameParseError,
    TransportError,
    UpstreamError,
)
from open_chat.events.bus import EventBus
from open_chat.store import MessageStore
from open_chat.stream.frames import Frame, FrameDecoder
from open_chat.stream.normalizer import parse_payload
from open_chat.stream.segmenter import display_parts
from open_chat.types import (
    ChatEvent,
    DisplayPart,
    EventType,
    FilePart,
    Message,
    MessagePart,
    Model,
    TextPart,
)

_logger = logging.getLogger(__name__)


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    """Next body chunk, or ``None`` once the response is exhausted."""
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


# ---------------------------------------------------------------------------
# MessageAssembler
# ---------------------------------------------------------------------------

class MessageAssembler:
    """Append deltas to the last text part of an in-memory message."""

    def __init__(self, message: Message) -> None:
        self.message = message

    def append(self, delta: str) -> None:
        parts = self.message.parts
        if not parts or not isinstance(parts[-1], TextPart):
            parts.append(TextPart())
        parts[-1].text += delta

    @property
    def text(self) -> str:
        return self.message.text

    def display(self) -> list[DisplayPart]:
        return display_parts(self.message.parts)

    def mark(self, status: str, **extra: Any) -> None:
        if not self.message.parts:
            self.message.parts.append(TextPart())
        self.message.metadata["status"] = status
        self.message.metadata.update(extra)


# ---------------------------------------------------------------------------
# ChatClient
# ---------------------------------------------------------------------------

class ChatClient:
    """Send chat turns to the endpoint and assemble the streamed reply.

    ``status`` follows the turn: ``ready`` -> ``submitted`` -> ``streaming``
    -> ``ready`` (or ``error``).
    """

    def __init__(
        self,
        config: ChatConfig,
        store: MessageStore,
        bus: EventBus | None = None,
        client: httpx.AsyncClient | None = None,
        password: str | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._bus = bus or EventBus()
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(
            base_url=config.endpoint_url,
            timeout=httpx.Timeout(config.timeout, connect=30, read=300),
        )
        self.password = config.password if password is None else password
        self.status = "ready"
        self._cancel = asyncio.Event()

    @property
    def bus(self) -> EventBus:
        return self._bus

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(
        self,
        session_id: str,
        text: str,
        *,
        model: str | None = None,
        provider: str | None = None,
        files: list[FilePart] | None = None,
        search: bool = False,
    ) -> Message:
        """Persist a user message and stream the assistant reply.

        Raises ``AuthError`` on 401 (no assistant message is created),
        ``TransportError`` on any other non-2xx response and
        ``UpstreamError`` when the provider fails mid-stream.
        """
        history = self._store.list_messages(session_id)
        parts: list[MessagePart] = [*(files or []), TextPart(text=text)]
        user = Message(role="user", parts=parts, session_id=session_id)
        self._store.add_message(user)
        await self._emit(EventType.MESSAGE_CREATED, user)
        return await self._reply(session_id, [*history, user], model, provider, search)

    async def regenerate(
        self,
        session_id: str,
        *,
        model: str | None = None,
        provider: str | None = None,
        search: bool = False,
    ) -> Message | None:
        """Drop the replies to the last user message and stream a new one."""
        messages = self._store.list_messages(session_id)
        last_user = next(
            (i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "user"),
            None,
        )
        if last_user is None:
            return None
        for stale in messages[last_user + 1:]:
            if stale.role == "assistant":
                self._store.delete_message(stale.id)
        return await self._reply(
            session_id, messages[:last_user + 1], model, provider, search,
        )

    def cancel(self) -> None:
        """Stop the current turn, interrupting a pending read."""
        self._cancel.set()

    async def models(self) -> list[Model]:
        """Selectable models from the endpoint, or the static defaults."""
        try:
            resp = await self._http.get("/api/models")
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            _logger.warning("Could not load models: %s", e)
            return list(DEFAULT_MODELS)
        models = [
            Model(
                id=m["id"],
                name=m.get("name", m["id"]),
                provider=m.get("provider", "openai"),
                type=m.get("type", "Text Generation"),
                input=m.get("input"),
                tag=m.get("tag"),
            )
            for m in data if isinstance(m, dict) and m.get("id")
        ] if isinstance(data, list) else []
        return models or list(DEFAULT_MODELS)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _reply(
        self,
        session_id: str,
        messages: list[Message],
        model: str | None,
        provider: str | None,
        search: bool,
    ) -> Message:
        self._cancel.clear()
        self.status = "submitted"
        window = messages[-self._config.window:] if self._config.window > 0 else messages
        body = {
            "messages": [m.to_wire() for m in window],
            "model": model or self._config.default_model,
            "provider": provider or self._config.default_provider,
            "search": search,
        }
        headers = {"Authorization": self.password or ""}

        try:
            async with self._http.stream("POST", "/api/chat", json=body, headers=headers) as resp:
                return await self._receive(session_id, resp)
        except httpx.HTTPError as e:
            self.status = "error"
            _logger.warning("Chat request failed: %s", e)
            raise TransportError(f"request failed: {e}") from e

    async def _receive(self, session_id: str, resp: httpx.Response) -> Message:
        if resp.status_code == 401:
            self.status = "error"
            await self._bus.emit(ChatEvent(EventType.AUTH_REQUIRED, {"session_id": session_id}))
            raise AuthError(body=(await resp.aread()).decode(errors="replace"))
        if not resp.is_success:
            self.status = "error"
            text = (await resp.aread()).decode(errors="replace")
            raise TransportError(text or f"HTTP {resp.status_code}", resp.status_code, text)

        self.status = "streaming"
        assembler = MessageAssembler(
            Message(role="assistant", parts=[TextPart()], session_id=session_id),
        )
        await self._emit(EventType.MESSAGE_CREATED, assembler.message)
        try:
            done = await self._consume(resp, assembler)
        except CancellationError:
            return await self._finish_cancelled(assembler)
        except UpstreamError as e:
            await self._finish_failed(assembler, str(e))
            raise

        assembler.mark("done", **done)
        self._store.add_message(assembler.message)
        self._store.touch_session(session_id)
        self.status = "ready"
        await self._emit(EventType.MESSAGE_DONE, assembler.message)
        return assembler.message

    async def _consume(
        self,
        resp: httpx.Response,
        assembler: MessageAssembler,
    ) -> dict[str, Any]:
        """Apply frames until ``done``; return the done frame's extra fields.

        Every chunk read races ``cancel()``, so a stalled endpoint cannot
        hold the turn open.  A chunk that already arrived is still applied.
        """
        decoder = FrameDecoder()
        chunks = resp.aiter_bytes()
        cancelled = asyncio.ensure_future(self._cancel.wait())
        try:
            while True:
                read = asyncio.ensure_future(_next_chunk(chunks))
                finished, _ = await asyncio.wait(
                    {read, cancelled}, return_when=asyncio.FIRST_COMPLETED,
                )
                if read not in finished:
                    read.cancel()
                    await asyncio.wait({read})
                    raise CancellationError()
                chunk = read.result()
                if chunk is None:
                    break
                for frame in decoder.feed(chunk):
                    done = await self._apply(frame, assembler)
                    if done is not None:
                        return done
                    if self._cancel.is_set():
                        raise CancellationError()
        except httpx.HTTPError as e:
            raise UpstreamError(f"stream interrupted: {e}") from e
        finally:
            cancelled.cancel()

        for frame in decoder.flush():
            done = await self._apply(frame, assembler)
            if done is not None:
                return done
        _logger.info("Chat stream ended without a done frame")
        return {"finishReason": "unknown"}

    async def _apply(self, frame: Frame, assembler: MessageAssembler) -> dict[str, Any] | None:
        try:
            data = parse_payload(frame.payload)
        except FrameParseError as e:
            _logger.debug("Ignoring frame: %s", e)
            return None
        if data.get("error"):
            raise UpstreamError(str(data["error"]))
        content = data.get("content")
        if isinstance(content, str) and content:
            assembler.append(content)
            await self._emit(EventType.MESSAGE_DELTA, assembler.message, delta=content)
        if data.get("done"):
            extra = {k: data[k] for k in ("finishReason", "usage") if k in data}
            return extra
        return None

    async def _finish_cancelled(self, assembler: MessageAssembler) -> Message:
        assembler.mark("cancelled")
        self._store.add_message(assembler.message)
        self.status = "ready"
        await self._emit(EventType.MESSAGE_CANCELLED, assembler.message)
        return assembler.message

    async def _finish_failed(self, assembler: MessageAssembler, error: str) -> None:
        assembler.mark("failed", error=error)
        if self._config.keep_partial:
            self._store.add_message(assembler.message)
        self.status = "error"
        _logger.warning("Chat turn failed: %s", error)
        await self._emit(EventType.MESSAGE_FAILED, assembler.message, error=error)

    async def _emit(self, event_type: EventType, message: Message, **data: Any) -> None:
        await self._bus.emit(ChatEvent(event_type, {"message": message, **data}))
