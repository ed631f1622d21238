"""In-process realtime state: live connections, room membership and typing sets."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.config import get_settings
from app.monitoring.metrics import realtime_connections, realtime_events_total

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send JSON through *websocket*, returning ``False`` if the peer is gone."""

    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Failed to send websocket message: %s", exc)
        return False


@dataclass(eq=False)
class Connection:
    """One authenticated websocket; identity is the object itself."""

    websocket: WebSocket
    user_id: int
    display_name: str
    avatar_url: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    visible: bool = True
    # room key -> chat id for rooms this connection joined
    chat_ids: Dict[str, int] = field(default_factory=dict)

    async def send(self, payload: dict[str, Any]) -> bool:
        return await safe_send_json(self.websocket, payload)


async def _fan_out(connections: Iterable[Connection], payload: dict[str, Any]) -> int:
    delivered = 0
    for connection in connections:
        if await connection.send(payload):
            delivered += 1
    if delivered:
        realtime_events_total.labels(payload.get("type", "unknown"), "out", "broadcast").inc(delivered)
    return delivered


# ---------------------------------------------------------------------------
# Presence registry
# ---------------------------------------------------------------------------


class PresenceRegistry:
    """Maps each user to at most one live connection.

    Both directions of the mapping are updated under one lock. ``unregister``
    only removes the entry when it still refers to the given connection, so a
    late disconnect of a replaced socket leaves the newer one in place.
    """

    def __init__(self) -> None:
        self._by_user: Dict[int, Connection] = {}
        self._by_id: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def register(self, connection: Connection) -> Connection | None:
        """Make *connection* current for its user; returns the replaced one."""

        async with self._lock:
            previous = self._by_user.get(connection.user_id)
            if previous is not None:
                self._by_id.pop(previous.id, None)
            self._by_user[connection.user_id] = connection
            self._by_id[connection.id] = connection
            realtime_connections.labels("chat").set(len(self._by_user))
        if previous is not None:
            logger.info(
                "User %s reconnected; connection %s replaces %s",
                connection.user_id,
                connection.id,
                previous.id,
            )
        return previous

    async def unregister(self, connection: Connection) -> bool:
        async with self._lock:
            self._by_id.pop(connection.id, None)
            if self._by_user.get(connection.user_id) is not connection:
                return False
            del self._by_user[connection.user_id]
            realtime_connections.labels("chat").set(len(self._by_user))
            return True

    async def lookup(self, user_id: int) -> Connection | None:
        async with self._lock:
            return self._by_user.get(user_id)

    async def is_online(self, user_id: int) -> bool:
        async with self._lock:
            return user_id in self._by_user

    async def is_current(self, connection: Connection) -> bool:
        async with self._lock:
            return self._by_user.get(connection.user_id) is connection

    async def online_user_ids(self) -> list[int]:
        async with self._lock:
            return sorted(self._by_user)

    async def send_to(self, user_id: int, payload: dict[str, Any]) -> bool:
        connection = await self.lookup(user_id)
        if connection is None:
            return False
        return await _fan_out([connection], payload) > 0

    async def broadcast(self, payload: dict[str, Any], *, exclude: Iterable[int] = ()) -> int:
        """Send *payload* to every registered user not listed in *exclude*."""

        skipped = set(exclude)
        async with self._lock:
            targets = [conn for user_id, conn in self._by_user.items() if user_id not in skipped]
        return await _fan_out(targets, payload)


# ---------------------------------------------------------------------------
# Room membership
# ---------------------------------------------------------------------------


class RoomDirectory:
    """Explicit relation between connections and the rooms they joined.

    A connection holds at most one room per kind, so joining a new private chat
    leaves the previous one.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, Connection]] = defaultdict(dict)
        self._joined: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    def _discard_locked(self, connection_id: str, room: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.pop(connection_id, None)
        if not members:
            self._rooms.pop(room, None)

    async def join(self, connection: Connection, room: str, kind: str) -> str | None:
        """Add *connection* to *room*; returns the room of the same kind it left."""

        async with self._lock:
            joined = self._joined[connection.id]
            previous = joined.get(kind)
            if previous is not None and previous != room:
                self._discard_locked(connection.id, previous)
            else:
                previous = None
            joined[kind] = room
            self._rooms[room][connection.id] = connection
            return previous

    async def leave(self, connection: Connection, room: str) -> bool:
        async with self._lock:
            joined = self._joined.get(connection.id, {})
            kind = next((key for key, value in joined.items() if value == room), None)
            if kind is None:
                return False
            del joined[kind]
            if not joined:
                self._joined.pop(connection.id, None)
            self._discard_locked(connection.id, room)
            return True

    async def leave_all(self, connection: Connection) -> list[str]:
        async with self._lock:
            rooms = list(self._joined.pop(connection.id, {}).values())
            for room in rooms:
                self._discard_locked(connection.id, room)
            return rooms

    async def rooms_of(self, connection: Connection) -> list[str]:
        async with self._lock:
            return list(self._joined.get(connection.id, {}).values())

    async def members(self, room: str) -> list[Connection]:
        async with self._lock:
            return list(self._rooms.get(room, {}).values())

    async def is_member(self, connection_id: str, room: str) -> bool:
        async with self._lock:
            return connection_id in self._rooms.get(room, {})

    async def broadcast(
        self,
        room: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[str] = (),
    ) -> int:
        """Send *payload* to the room's connections whose id is not in *exclude*."""

        skipped = set(exclude)
        async with self._lock:
            targets = [conn for conn_id, conn in self._rooms.get(room, {}).items() if conn_id not in skipped]
        return await _fan_out(targets, payload)


# ---------------------------------------------------------------------------
# Typing aggregator
# ---------------------------------------------------------------------------


class TypingAggregator:
    """Per-room set of users composing a message; entries expire after a TTL."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Dict[int, tuple[str, float]]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def _prune_locked(self, room: str, now: float) -> Dict[int, tuple[str, float]]:
        bucket = self._entries.get(room, {})
        expired = [user_id for user_id, (_, ts) in bucket.items() if now - ts > self._ttl]
        for user_id in expired:
            bucket.pop(user_id, None)
        if not bucket:
            self._entries.pop(room, None)
        return bucket

    @staticmethod
    def _snapshot(bucket: Dict[int, tuple[str, float]]) -> list[dict[str, Any]]:
        entries = [{"id": user_id, "displayName": name} for user_id, (name, _) in bucket.items()]
        entries.sort(key=lambda item: (str(item["displayName"]).lower(), item["id"]))
        return entries

    async def start(self, room: str, user_id: int, display_name: str) -> list[dict[str, Any]]:
        now = self._clock()
        async with self._lock:
            self._entries[room][user_id] = (display_name, now)
            return self._snapshot(self._prune_locked(room, now))

    async def stop(self, room: str, user_id: int) -> tuple[list[dict[str, Any]], bool]:
        """Remove *user_id* from *room*; the flag tells whether it was typing."""

        now = self._clock()
        async with self._lock:
            bucket = self._entries.get(room)
            removed = bucket is not None and bucket.pop(user_id, None) is not None
            return self._snapshot(self._prune_locked(room, now)), removed

    async def clear_user(self, user_id: int) -> list[tuple[str, list[dict[str, Any]]]]:
        """Remove *user_id* from every room; returns the rooms whose set changed."""

        now = self._clock()
        changed: list[tuple[str, list[dict[str, Any]]]] = []
        async with self._lock:
            for room in list(self._entries):
                bucket = self._entries[room]
                if bucket.pop(user_id, None) is None:
                    continue
                changed.append((room, self._snapshot(self._prune_locked(room, now))))
        return changed

    async def snapshot(self, room: str) -> list[dict[str, Any]]:
        async with self._lock:
            return self._snapshot(self._prune_locked(room, self._clock()))


# ---------------------------------------------------------------------------
# Shared instances
# ---------------------------------------------------------------------------


settings = get_settings()

_node_id = settings.realtime_node_id or uuid.uuid4().hex

presence_registry = PresenceRegistry()
room_directory = RoomDirectory()
typing_aggregator = TypingAggregator(float(settings.realtime_typing_ttl_seconds))


async def startup_realtime() -> None:
    realtime_connections.labels("chat").set(0)
    logger.info("Realtime node %s ready", _node_id)


async def shutdown_realtime() -> None:
    online = await presence_registry.online_user_ids()
    if online:
        logger.info("Realtime node %s stopping with %d live connections", _node_id, len(online))


def get_presence_registry() -> PresenceRegistry:
    return presence_registry


def get_room_directory() -> RoomDirectory:
    return room_directory


def get_typing_aggregator() -> TypingAggregator:
    return typing_aggregator


__all__ = [
    "Connection",
    "PresenceRegistry",
    "RoomDirectory",
    "TypingAggregator",
    "get_presence_registry",
    "get_room_directory",
    "get_typing_aggregator",
    "safe_send_json",
    "shutdown_realtime",
    "startup_realtime",
]
