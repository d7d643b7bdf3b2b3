"""Configuration for Open Chat.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./open_chat.yaml``
  3. ``~/.config/open-chat/config.yaml``
  4. Built-in defaults

``${VAR}`` references inside string values are expanded once, at load time.
The resulting ``ChatConfig`` is passed explicitly to everything that needs
it; nothing in the streaming path reads the environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Follow the user's instructions carefully. "
    "Respond using Markdown."
)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class ProviderSpec:
    """Connection settings for one backend family.

    ``base_url`` is used as-is by the ``openai`` family.  ``workers-ai`` and
    ``google`` build their URLs from ``account_id`` (and ``gateway``) unless
    ``base_url`` overrides them.
    """

    base_url: str = ""
    api_key: str = ""
    account_id: str = ""
    gateway: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    reasoning_models: list[str] = field(default_factory=list)
    extra_params: dict[str, Any] = field(default_factory=dict)


def _default_providers() -> dict[str, ProviderSpec]:
    return {
        "openai": ProviderSpec(
            base_url="https://api.openai.com/v1",
            temperature=0.7,
            max_tokens=1024,
        ),
        "workers-ai": ProviderSpec(
            max_tokens=2048,
            reasoning_models=["@cf/qwen/qwq-32b"],
        ),
        "google": ProviderSpec(),
    }


@dataclass
class ChatConfig:
    """Top-level config for Open Chat."""

    providers: dict[str, ProviderSpec] = field(default_factory=_default_providers)
    default_provider: str = "openai"
    default_model: str = "gpt-4o-mini"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Shared secret for the HTTP endpoint; empty disables the gate
    password: str = ""

    # Client consumer
    window: int = 10
    keep_partial: bool = False
    db_path: str = "~/.open_chat/chat.db"
    endpoint_url: str = "http://127.0.0.1:8765"

    # Server
    host: str = "127.0.0.1"
    port: int = 8765
    timeout: float = 120

    def provider(self, name: str) -> ProviderSpec:
        return self.providers.get(name, ProviderSpec())


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./open_chat.yaml"),
    Path.home() / ".config" / "open-chat" / "config.yaml",
]


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand(v) for v in value]
    return value


def _parse_provider(raw: dict[str, Any], base: ProviderSpec) -> ProviderSpec:
    return ProviderSpec(
        base_url=raw.get("base_url", base.base_url),
        api_key=raw.get("api_key", base.api_key),
        account_id=raw.get("account_id", base.account_id),
        gateway=raw.get("gateway", base.gateway),
        temperature=raw.get("temperature", base.temperature),
        max_tokens=raw.get("max_tokens", base.max_tokens),
        reasoning_models=raw.get("reasoning_models", base.reasoning_models),
        extra_params=raw.get("extra_params", base.extra_params),
    )


def load_config(path: str | Path | None = None) -> ChatConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ChatConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return ChatConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return ChatConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = _expand(yaml.safe_load(f) or {})

    defaults = ChatConfig()
    providers = _default_providers()
    for name, praw in (raw.get("providers") or {}).items():
        providers[name] = _parse_provider(praw or {}, providers.get(name, ProviderSpec()))

    return ChatConfig(
        providers=providers,
        default_provider=raw.get("default_provider", defaults.default_provider),
        default_model=raw.get("default_model", defaults.default_model),
        system_prompt=raw.get("system_prompt", defaults.system_prompt),
        password=str(raw.get("password") or ""),
        window=int(raw.get("window", defaults.window)),
        keep_partial=bool(raw.get("keep_partial", defaults.keep_partial)),
        db_path=raw.get("db_path", defaults.db_path),
        endpoint_url=raw.get("endpoint_url", defaults.endpoint_url),
        host=raw.get("host", defaults.host),
        port=int(raw.get("port", defaults.port)),
        timeout=float(raw.get("timeout", defaults.timeout)),
    )
