"""Shared fixtures: a recording fake upstream built on ``httpx.MockTransport``."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from open_chat.config import ChatConfig


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered in exactly the given chunks; records closing."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.closed = False
        self.consumed = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.consumed += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def sse_bytes(*payloads: Any) -> bytes:
    out = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        out.append(f"data: {data}\n\n")
    return "".join(out).encode()


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


class FakeUpstream:
    """Answers every request with the configured status and chunks."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.streams: list[ChunkStream] = []
        self.status = 200
        self.chunks: list[bytes] = []

    def respond(self, status: int = 200, body: bytes = b"", chunks: list[bytes] | None = None) -> None:
        self.status = status
        self.chunks = chunks if chunks is not None else ([body] if body else [])

    def respond_sse(self, *payloads: Any, chunk_size: int | None = None) -> None:
        data = sse_bytes(*payloads)
        self.respond(chunks=split_every(data, chunk_size) if chunk_size else [data])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        stream = ChunkStream(list(self.chunks))
        self.streams.append(stream)
        return httpx.Response(
            self.status,
            stream=stream,
            headers={"content-type": "text/event-stream"},
        )

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), **kwargs)

    @property
    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def config() -> ChatConfig:
    cfg = ChatConfig()
    cfg.providers["openai"].base_url = "http://upstream.test/v1"
    cfg.providers["openai"].api_key = "sk-test"
    cfg.providers["workers-ai"].account_id = "acct"
    cfg.providers["workers-ai"].api_key = "cf-test"
    cfg.providers["google"].account_id = "acct"
    cfg.providers["google"].gateway = "gw"
    cfg.providers["google"].api_key = "g-test"
    return cfg
