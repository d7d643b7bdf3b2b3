"""Upstream dispatch and the normalized event stream.

``ChatTransport.dispatch()`` picks the adapter for the request's provider,
opens the streaming HTTP call and hands back an ``EventStream``: an explicit
pull-based async iterator over ``TextDelta`` / ``Finish`` / ``StreamError``.
Each ``__anext__`` pulls network chunks only until at least one event is
ready, so backpressure is whatever pace the consumer reads at.

Every stream ends with exactly one terminal event.  If the upstream closes
without sending one, ``Finish(unknown)`` is synthesized.  The upstream
response is closed on every exit path: terminal event, ``aclose()``,
``async with`` exit.
"""

from __future__ import annotations

import logging
from collections import deque

import httpx

from open_chat.adapters import UpstreamAdapter, create_adapter
from open_chat.config import ChatConfig
from open_chat.errors import AuthError
from open_chat.stream.frames import Frame, FrameDecoder
from open_chat.stream.normalizer import THINK_OPEN, EventNormalizer
from open_chat.types import (
    ChatRequest,
    Finish,
    FinishReason,
    NormalizedEvent,
    Provider,
    StreamError,
    TextDelta,
    is_terminal,
)

_logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 2000


async def _read_body(response: httpx.Response) -> str:
    try:
        raw = await response.aread()
    except httpx.HTTPError:
        return ""
    return raw.decode(errors="replace")[:_MAX_ERROR_BODY]


# ---------------------------------------------------------------------------
# EventStream
# ---------------------------------------------------------------------------

class EventStream:
    """Lazy, finite, non-restartable stream of normalized events."""

    def __init__(
        self,
        response: httpx.Response | None,
        normalizer: EventNormalizer | None,
        *,
        starts_with_reasoning: bool = False,
        opening_error: StreamError | None = None,
    ) -> None:
        self._response = response
        self._chunks = response.aiter_bytes() if response is not None else None
        self._decoder = FrameDecoder()
        self._normalizer = normalizer
        self._pending: deque[NormalizedEvent] = deque()
        self._seed_reasoning = starts_with_reasoning
        self._seed_buffer = ""
        self._received_bytes = False
        self._done = False
        self._closed = False

        # Set when the upstream refused the request; no frames will follow
        self.opening_error = opening_error
        if opening_error is not None:
            self._pending.append(opening_error)

    @classmethod
    def failed(cls, error: StreamError) -> EventStream:
        """A stream whose only event is *error*."""
        return cls(None, None, opening_error=error)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Async iterator protocol
    # ------------------------------------------------------------------

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> NormalizedEvent:
        if self._done:
            raise StopAsyncIteration
        while not self._pending:
            await self._pull()
        event = self._pending.popleft()
        if is_terminal(event):
            self._done = True
            await self.aclose()
        return event

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the upstream connection.  Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._done = True
        self._pending.clear()
        if self._response is not None:
            await self._response.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _pull(self) -> None:
        if self._chunks is None or self._normalizer is None or self._closed:
            self._push(StreamError("stream closed"))
            return
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._on_upstream_closed()
            return
        except httpx.HTTPError as e:
            _logger.warning("Upstream stream interrupted: %s", e)
            self._push(StreamError(f"stream interrupted: {e}"))
            return
        if chunk:
            self._received_bytes = True
        self._accept(self._decoder.feed(chunk))

    def _accept(self, frames: list[Frame]) -> None:
        for frame in frames:
            for event in self._normalizer.feed(frame):
                self._push(event)
            if self._normalizer.finished:
                break

    def _push(self, event: NormalizedEvent) -> None:
        if self._seed_reasoning:
            if isinstance(event, TextDelta):
                # Hold deltas while they could still be a split "<think>"
                self._seed_buffer += event.text_delta
                head = self._seed_buffer.lstrip()
                if len(head) < len(THINK_OPEN) and THINK_OPEN.startswith(head):
                    return
                self._release_seed()
                return
            self._release_seed()
        self._pending.append(event)

    def _release_seed(self) -> None:
        self._seed_reasoning = False
        text, self._seed_buffer = self._seed_buffer, ""
        if not text:
            return
        if not text.lstrip().startswith(THINK_OPEN):
            self._pending.append(TextDelta(THINK_OPEN))
        self._pending.append(TextDelta(text))

    def _on_upstream_closed(self) -> None:
        self._accept(self._decoder.flush())
        if self._normalizer.finished:
            return
        if not self._received_bytes:
            self._push(StreamError("Response body is empty"))
            return
        _logger.info("Upstream closed without a finish event")
        self._push(Finish(FinishReason.UNKNOWN))


# ---------------------------------------------------------------------------
# ChatTransport
# ---------------------------------------------------------------------------

class ChatTransport:
    """Dispatch ``ChatRequest``s to the configured upstream providers.

    Parameters
    ----------
    config:
        Provider settings, read once at startup.
    client:
        Optional pre-built ``httpx.AsyncClient`` (tests inject one backed by
        ``httpx.MockTransport``).  A client created here is closed by
        ``aclose()``.
    """

    def __init__(
        self,
        config: ChatConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout, connect=30, read=300),
        )
        self._adapters: dict[Provider, UpstreamAdapter] = {}

    def adapter(self, provider: Provider | str) -> UpstreamAdapter:
        provider = Provider(provider)
        if provider not in self._adapters:
            self._adapters[provider] = create_adapter(provider, self._config)
        return self._adapters[provider]

    async def dispatch(self, request: ChatRequest) -> EventStream:
        """Open the upstream stream for *request*.

        Raises ``AuthError`` when the upstream answers 401 or 403; nothing is
        streamed in that case.  Any other failure to open yields a stream
        holding a single ``StreamError`` (see ``EventStream.opening_error``).
        """
        adapter = self.adapter(request.provider)
        call = adapter.build_call(request)
        http_request = self._client.build_request(
            call.method,
            call.url,
            headers=call.headers,
            params=call.params or None,
            json=call.body,
        )
        _logger.info(
            "Dispatching %s model=%s messages=%d",
            adapter.provider.value, request.model, len(request.messages),
        )

        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            _logger.warning("Upstream %s request failed: %s", adapter.provider.value, e)
            return EventStream.failed(StreamError(f"API request failed: {e}"))

        if response.status_code in (401, 403):
            body = await _read_body(response)
            await response.aclose()
            raise AuthError("Upstream rejected credentials", status=response.status_code, body=body)

        if not response.is_success:
            body = await _read_body(response)
            await response.aclose()
            _logger.warning(
                "Upstream %s returned %d: %s",
                adapter.provider.value, response.status_code, body[:200],
            )
            message = f"API request failed: {response.status_code} {response.reason_phrase}"
            if body:
                message = f"{message}: {body}"
            return EventStream.failed(StreamError(message))

        return EventStream(
            response,
            EventNormalizer(adapter.provider),
            starts_with_reasoning=adapter.starts_with_reasoning(request.model),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
