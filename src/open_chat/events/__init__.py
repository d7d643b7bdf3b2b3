from open_chat.events.bus import EventBus

__all__ = ["EventBus"]
