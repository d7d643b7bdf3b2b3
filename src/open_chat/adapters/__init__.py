"""Upstream adapters, one per backend family."""

from __future__ import annotations

from open_chat.config import ChatConfig
from open_chat.types import Provider

from .base import UpstreamAdapter, UpstreamCall
from .gateway import GatewayAdapter
from .openai import OpenAIAdapter
from .workers_ai import WorkersAIAdapter

ADAPTERS: dict[Provider, type[UpstreamAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.WORKERS_AI: WorkersAIAdapter,
    Provider.GOOGLE: GatewayAdapter,
}


def create_adapter(provider: Provider | str, config: ChatConfig) -> UpstreamAdapter:
    """Build the adapter for *provider*.  Raises ``ValueError`` if unknown."""
    provider = Provider(provider)
    return ADAPTERS[provider](config.provider(provider.value), config.system_prompt)


__all__ = [
    "ADAPTERS",
    "GatewayAdapter",
    "OpenAIAdapter",
    "UpstreamAdapter",
    "UpstreamCall",
    "WorkersAIAdapter",
    "create_adapter",
]
