"""Realtime helpers for websocket chat coordination."""

from .managers import (  # noqa: F401
    Connection,
    PresenceRegistry,
    RoomDirectory,
    TypingAggregator,
    get_presence_registry,
    get_room_directory,
    get_typing_aggregator,
    safe_send_json,
    shutdown_realtime,
    startup_realtime,
)

__all__ = [
    "startup_realtime",
    "shutdown_realtime",
    "get_presence_registry",
    "get_room_directory",
    "get_typing_aggregator",
    "safe_send_json",
    "Connection",
    "PresenceRegistry",
    "RoomDirectory",
    "TypingAggregator",
]
