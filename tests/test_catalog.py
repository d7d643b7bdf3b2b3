"""Tests for the model catalog."""

import httpx
import pytest

from open_chat.catalog import DEFAULT_MODELS, fetch_models


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_lists_models_without_embeddings(config):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": [
            {"id": "gpt-4o"},
            {"id": "text-embedding-3-small"},
            {"id": "qwen2-vl-7b"},
            {"id": "llava-vision"},
        ]})

    async with _client(handler) as client:
        models = await fetch_models(config, client=client)

    assert [m.id for m in models] == ["gpt-4o", "qwen2-vl-7b", "llava-vision"]
    assert models[0].input is None
    assert models[1].input == ["image"]
    assert models[2].input == ["image"]
    assert str(seen[0].url) == "http://upstream.test/v1/models"
    assert seen[0].headers["authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_fallback_on_error_status(config):
    async with _client(lambda request: httpx.Response(500)) as client:
        assert await fetch_models(config, client=client) == DEFAULT_MODELS


@pytest.mark.asyncio
async def test_fallback_on_connection_error(config):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as client:
        assert await fetch_models(config, client=client) == DEFAULT_MODELS


@pytest.mark.asyncio
async def test_fallback_on_empty_listing(config):
    async with _client(lambda request: httpx.Response(200, json={"data": []})) as client:
        assert await fetch_models(config, client=client) == DEFAULT_MODELS


@pytest.mark.asyncio
async def test_fallback_on_malformed_body(config):
    async with _client(lambda request: httpx.Response(200, content=b"not json")) as client:
        assert await fetch_models(config, client=client) == DEFAULT_MODELS


def test_default_models_shape():
    assert DEFAULT_MODELS[0].to_dict() == {
        "id": "gpt-4o-mini",
        "name": "GPT-4o-mini",
        "type": "Text Generation",
        "provider": "openai",
        "input": ["image"],
    }
