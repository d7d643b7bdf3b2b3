"""Open Chat: unified streaming chat over several LLM backends."""

from open_chat.client import ChatClient, MessageAssembler
from open_chat.config import ChatConfig, ProviderSpec, load_config
from open_chat.transport import ChatTransport, EventStream

__all__ = [
    "ChatClient",
    "ChatConfig",
    "ChatTransport",
    "EventStream",
    "MessageAssembler",
    "ProviderSpec",
    "load_config",
]
