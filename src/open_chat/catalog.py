"""Model catalog: list selectable models, with a static fallback."""

from __future__ import annotations

import logging

import httpx

from open_chat.config import ChatConfig
from open_chat.types import Model

_logger = logging.getLogger(__name__)

DEFAULT_MODELS: list[Model] = [
    Model(id="gpt-4o-mini", name="GPT-4o-mini", input=["image"]),
    Model(id="gpt-4o", name="GPT-4o", input=["image"]),
    Model(id="o1-mini", name="o1-mini"),
    Model(id="o1", name="o1"),
]

_VISION_MARKERS = ("vl", "vision", "4v")


def _to_model(model_id: str) -> Model:
    lower = model_id.lower()
    vision = any(marker in lower for marker in _VISION_MARKERS)
    return Model(id=model_id, name=model_id, input=["image"] if vision else None)


async def fetch_models(
    config: ChatConfig,
    client: httpx.AsyncClient | None = None,
) -> list[Model]:
    """Fetch chat models from the OpenAI-compatible ``/models`` listing.

    Embedding models are dropped.  Any failure, or an empty listing, returns
    ``DEFAULT_MODELS``.
    """
    spec = config.provider("openai")
    base = (spec.base_url or "https://api.openai.com/v1").rstrip("/")
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(30))
    try:
        resp = await client.get(
            f"{base}/models",
            headers={"Authorization": f"Bearer {spec.api_key}"},
        )
        if not resp.is_success:
            _logger.warning("Failed to fetch models: %d", resp.status_code)
            return list(DEFAULT_MODELS)
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        _logger.warning("Error fetching models: %s", e)
        return list(DEFAULT_MODELS)
    finally:
        if own_client:
            await client.aclose()

    entries = data.get("data") if isinstance(data, dict) else None
    models = [
        _to_model(entry["id"])
        for entry in entries or []
        if isinstance(entry, dict)
        and isinstance(entry.get("id"), str)
        and "embedding" not in entry["id"].lower()
    ]
    return models or list(DEFAULT_MODELS)
