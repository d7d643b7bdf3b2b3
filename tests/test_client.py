"""Tests for the client stream consumer (ChatClient / MessageAssembler)."""

import asyncio
import json

import httpx
import pytest

from open_chat.catalog import DEFAULT_MODELS
from open_chat.client import ChatClient, MessageAssembler
from open_chat.errors import AuthError, TransportError, UpstreamError
from open_chat.events.bus import EventBus
from open_chat.server import create_app
from open_chat.store import SQLiteMessageStore
from open_chat.transport import ChatTransport
from open_chat.types import EventType, Message, ReasoningPart, TextPart

from conftest import ChunkStream


def _sse(*frames: dict) -> list[bytes]:
    """One chunk per outbound frame."""
    return [f"data: {json.dumps(f)}\n\n".encode() for f in frames]


class StallingStream(ChunkStream):
    """Delivers its chunks, then never sends another byte."""

    async def __aiter__(self):
        for chunk in self.chunks:
            self.consumed += 1
            yield chunk
        await asyncio.Event().wait()


class FakeEndpoint:
    """Stands in for the chat endpoint at the HTTP level."""

    def __init__(self) -> None:
        self.status = 200
        self.chunks: list[bytes] = []
        self.models: object = []
        self.requests: list[httpx.Request] = []
        self.stream_cls = ChunkStream
        self.streams: list[ChunkStream] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/models":
            return httpx.Response(self.status, json=self.models)
        stream = self.stream_cls(list(self.chunks))
        self.streams.append(stream)
        return httpx.Response(self.status, stream=stream)

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def store():
    s = SQLiteMessageStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def endpoint():
    return FakeEndpoint()


@pytest.fixture
def recorded():
    return []


@pytest.fixture
def chat(config, store, endpoint, recorded):
    bus = EventBus()
    bus.subscribe("*", recorded.append)
    http = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler), base_url="http://chat.test")
    return ChatClient(config, store, bus=bus, client=http)


def _types(recorded) -> list[EventType]:
    return [e.type for e in recorded]


class TestMessageAssembler:
    def test_appends_to_last_text_part(self):
        assembler = MessageAssembler(Message(role="assistant", parts=[TextPart()]))
        assembler.append("<think>a")
        assembler.append("b</think>")
        assembler.append("Answer")
        assert len(assembler.message.parts) == 1
        assert assembler.text == "<think>ab</think>Answer"
        assert assembler.display() == [ReasoningPart("ab"), TextPart("Answer")]

    def test_mark_never_leaves_parts_empty(self):
        assembler = MessageAssembler(Message(role="assistant"))
        assembler.mark("failed", error="boom")
        assert assembler.message.parts == [TextPart("")]
        assert assembler.message.metadata == {"status": "failed", "error": "boom"}


class TestSend:
    @pytest.mark.asyncio
    async def test_hello(self, chat, store, endpoint, recorded):
        session = store.create_session()
        endpoint.chunks = _sse(
            {"content": "Hel"},
            {"content": "lo"},
            {"done": True, "finishReason": "stop"},
        )
        reply = await chat.send(session.id, "Hi")

        assert reply.role == "assistant"
        assert reply.text == "Hello"
        assert reply.metadata["status"] == "done"
        assert reply.metadata["finishReason"] == "stop"
        assert chat.status == "ready"

        stored = store.list_messages(session.id)
        assert [m.role for m in stored] == ["user", "assistant"]
        assert stored[1].text == "Hello"

        assert _types(recorded) == [
            EventType.MESSAGE_CREATED,
            EventType.MESSAGE_CREATED,
            EventType.MESSAGE_DELTA,
            EventType.MESSAGE_DELTA,
            EventType.MESSAGE_DONE,
        ]
        assert [e.data["delta"] for e in recorded if e.type == EventType.MESSAGE_DELTA] == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_request_body(self, chat, store, endpoint, config):
        session = store.create_session()
        endpoint.chunks = _sse({"done": True})
        await chat.send(session.id, "Hi", model="gpt-4o", search=True)
        body = endpoint.last_body
        assert body["model"] == "gpt-4o"
        assert body["provider"] == config.default_provider
        assert body["search"] is True
        assert body["messages"] == [{"role": "user", "parts": [{"type": "text", "text": "Hi"}]}]

    @pytest.mark.asyncio
    async def test_password_header(self, config, store, endpoint):
        http = httpx.AsyncClient(transport=httpx.MockTransport(endpoint.handler), base_url="http://chat.test")
        client = ChatClient(config, store, client=http, password="s3cret")
        endpoint.chunks = _sse({"done": True})
        await client.send(store.create_session().id, "Hi")
        assert endpoint.requests[-1].headers["authorization"] == "s3cret"

    @pytest.mark.asyncio
    async def test_history_window(self, chat, store, endpoint, config):
        config.window = 2
        session = store.create_session()
        for i in range(3):
            store.add_message(Message(
                role="user" if i % 2 == 0 else "assistant",
                parts=[TextPart(f"m{i}")],
                session_id=session.id,
                created_at=float(i),
            ))
        endpoint.chunks = _sse({"done": True})
        await chat.send(session.id, "latest")
        texts = [m["parts"][-1]["text"] for m in endpoint.last_body["messages"]]
        assert texts == ["m2", "latest"]

    @pytest.mark.asyncio
    async def test_ends_without_done(self, chat, store, endpoint):
        endpoint.chunks = _sse({"content": "x"})
        reply = await chat.send(store.create_session().id, "Hi")
        assert reply.text == "x"
        assert reply.metadata["finishReason"] == "unknown"

    @pytest.mark.asyncio
    async def test_reasoning_displayed_separately(self, chat, store, endpoint):
        endpoint.chunks = _sse(
            {"content": "<think>pondering"},
            {"content": "</think>Done."},
            {"done": True},
        )
        reply = await chat.send(store.create_session().id, "Hi")
        assert MessageAssembler(reply).display() == [ReasoningPart("pondering"), TextPart("Done.")]


class TestFailures:
    @pytest.mark.asyncio
    async def test_unauthorized(self, chat, store, endpoint, recorded):
        session = store.create_session()
        endpoint.status = 401
        with pytest.raises(AuthError):
            await chat.send(session.id, "Hi")
        stored = store.list_messages(session.id)
        assert [m.role for m in stored] == ["user"]
        assert EventType.AUTH_REQUIRED in _types(recorded)
        assert chat.status == "error"

    @pytest.mark.asyncio
    async def test_endpoint_error(self, chat, store, endpoint):
        endpoint.status = 502
        endpoint.chunks = [b"API request failed: 500"]
        with pytest.raises(TransportError) as exc_info:
            await chat.send(store.create_session().id, "Hi")
        assert exc_info.value.status == 502
        assert "API request failed" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_endpoint_unreachable(self, config, store, recorded):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://chat.test")
        client = ChatClient(config, store, client=http)
        session = store.create_session()
        with pytest.raises(TransportError, match="connection refused"):
            await client.send(session.id, "Hi")
        assert client.status == "error"
        assert [m.role for m in store.list_messages(session.id)] == ["user"]

    @pytest.mark.asyncio
    async def test_error_frame_not_persisted(self, chat, store, endpoint, recorded):
        session = store.create_session()
        endpoint.chunks = _sse({"content": "par"}, {"error": "rate limited"}, {"done": True})
        with pytest.raises(UpstreamError, match="rate limited"):
            await chat.send(session.id, "Hi")
        assert [m.role for m in store.list_messages(session.id)] == ["user"]
        failed = [e for e in recorded if e.type == EventType.MESSAGE_FAILED]
        assert len(failed) == 1
        assert failed[0].data["error"] == "rate limited"
        assert chat.status == "error"

    @pytest.mark.asyncio
    async def test_keep_partial(self, chat, store, endpoint, config):
        config.keep_partial = True
        session = store.create_session()
        endpoint.chunks = _sse({"content": "par"}, {"error": "rate limited"})
        with pytest.raises(UpstreamError):
            await chat.send(session.id, "Hi")
        stored = store.list_messages(session.id)
        assert stored[-1].text == "par"
        assert stored[-1].metadata["status"] == "failed"


class TestCancelAndRegenerate:
    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_text(self, chat, store, endpoint, recorded):
        session = store.create_session()
        endpoint.chunks = _sse({"content": "a"}, {"content": "b"}, {"done": True})
        chat.bus.subscribe(EventType.MESSAGE_DELTA, lambda event: chat.cancel())

        reply = await chat.send(session.id, "Hi")
        assert reply.text == "a"
        assert reply.metadata["status"] == "cancelled"
        assert chat.status == "ready"
        assert EventType.MESSAGE_CANCELLED in _types(recorded)
        assert store.list_messages(session.id)[-1].metadata["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_interrupts_stalled_stream(self, chat, store, endpoint):
        session = store.create_session()
        endpoint.stream_cls = StallingStream
        endpoint.chunks = _sse({"content": "a"})
        got_delta = asyncio.Event()
        chat.bus.subscribe(EventType.MESSAGE_DELTA, lambda event: got_delta.set())

        task = asyncio.create_task(chat.send(session.id, "Hi"))
        await asyncio.wait_for(got_delta.wait(), 2)
        chat.cancel()
        reply = await asyncio.wait_for(task, 2)

        assert reply.text == "a"
        assert reply.metadata["status"] == "cancelled"
        assert chat.status == "ready"
        assert endpoint.streams[-1].closed

    @pytest.mark.asyncio
    async def test_regenerate_replaces_reply(self, chat, store, endpoint):
        session = store.create_session()
        store.add_message(Message(role="user", parts=[TextPart("Hi")], session_id=session.id, created_at=1.0))
        store.add_message(Message(role="assistant", parts=[TextPart("old")], session_id=session.id, created_at=2.0))
        endpoint.chunks = _sse({"content": "new"}, {"done": True})

        reply = await chat.regenerate(session.id)
        assert reply.text == "new"
        stored = store.list_messages(session.id)
        assert [(m.role, m.text) for m in stored] == [("user", "Hi"), ("assistant", "new")]
        assert len(endpoint.last_body["messages"]) == 1

    @pytest.mark.asyncio
    async def test_regenerate_without_user_message(self, chat, store):
        assert await chat.regenerate(store.create_session().id) is None


class TestModels:
    @pytest.mark.asyncio
    async def test_models_from_endpoint(self, chat, endpoint):
        endpoint.models = [{"id": "m1", "name": "M1", "input": ["image"]}]
        models = await chat.models()
        assert [m.id for m in models] == ["m1"]
        assert models[0].input == ["image"]

    @pytest.mark.asyncio
    async def test_models_fallback(self, chat, endpoint):
        endpoint.status = 500
        assert await chat.models() == DEFAULT_MODELS


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_through_asgi_app(self, config, store, upstream):
        upstream.respond_sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            "[DONE]",
            chunk_size=5,
        )
        app = create_app(config, transport=ChatTransport(config, client=upstream.client()))
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
        client = ChatClient(config, store, client=http)

        reply = await client.send(store.create_session().id, "Hi", model="gpt-4o-mini")
        assert reply.text == "Hello"
        assert reply.metadata["finishReason"] == "stop"
        assert reply.metadata["usage"] == {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0}
        assert upstream.last_json["messages"][-1] == {"role": "user", "content": "Hi"}
        await http.aclose()
