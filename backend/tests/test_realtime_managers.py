"""Unit tests for the in-process presence registry, room directory and typing sets."""

from __future__ import annotations

import pytest
from fastapi.websockets import WebSocketState

from murmur.realtime.managers import Connection, PresenceRegistry, RoomDirectory, TypingAggregator


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)


class ClosedWebSocket(DummyWebSocket):
    async def send_json(self, data: dict) -> None:
        raise RuntimeError("Cannot call send once a close message has been sent")


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def make_connection(user_id: int, name: str = "User") -> Connection:
    return Connection(websocket=DummyWebSocket(), user_id=user_id, display_name=name)


@pytest.mark.anyio("asyncio")
async def test_register_replaces_previous_connection():
    registry = PresenceRegistry()
    first = make_connection(1)
    second = make_connection(1)

    assert await registry.register(first) is None
    assert await registry.register(second) is first
    assert await registry.lookup(1) is second


@pytest.mark.anyio("asyncio")
async def test_stale_unregister_keeps_newer_connection():
    registry = PresenceRegistry()
    first = make_connection(1)
    second = make_connection(1)
    await registry.register(first)
    await registry.register(second)

    assert await registry.unregister(first) is False
    assert await registry.lookup(1) is second
    assert await registry.is_current(second)

    assert await registry.unregister(second) is True
    assert await registry.lookup(1) is None
    assert not await registry.is_online(1)


@pytest.mark.anyio("asyncio")
async def test_broadcast_skips_excluded_users():
    registry = PresenceRegistry()
    alice = make_connection(1)
    bob = make_connection(2)
    await registry.register(alice)
    await registry.register(bob)

    delivered = await registry.broadcast({"type": "user:online", "userId": 1}, exclude=[1])

    assert delivered == 1
    assert alice.websocket.sent == []
    assert bob.websocket.sent == [{"type": "user:online", "userId": 1}]


@pytest.mark.anyio("asyncio")
async def test_send_to_closed_socket_reports_failure():
    registry = PresenceRegistry()
    connection = Connection(websocket=ClosedWebSocket(), user_id=5, display_name="Gone")
    await registry.register(connection)

    assert await registry.send_to(5, {"type": "pong"}) is False
    assert await registry.send_to(6, {"type": "pong"}) is False


@pytest.mark.anyio("asyncio")
async def test_joining_a_private_room_leaves_the_previous_one():
    rooms = RoomDirectory()
    connection = make_connection(1)

    assert await rooms.join(connection, "private:1-2", "private") is None
    assert await rooms.join(connection, "group:7", "group") is None
    assert await rooms.join(connection, "private:1-3", "private") == "private:1-2"

    assert not await rooms.is_member(connection.id, "private:1-2")
    assert await rooms.is_member(connection.id, "private:1-3")
    assert await rooms.is_member(connection.id, "group:7")
    assert sorted(await rooms.rooms_of(connection)) == ["group:7", "private:1-3"]


@pytest.mark.anyio("asyncio")
async def test_rejoining_the_same_room_is_idempotent():
    rooms = RoomDirectory()
    connection = make_connection(1)

    await rooms.join(connection, "group:1", "group")
    assert await rooms.join(connection, "group:1", "group") is None
    assert await rooms.members("group:1") == [connection]


@pytest.mark.anyio("asyncio")
async def test_room_broadcast_excludes_connection_ids():
    rooms = RoomDirectory()
    alice = make_connection(1)
    bob = make_connection(2)
    await rooms.join(alice, "group:1", "group")
    await rooms.join(bob, "group:1", "group")

    delivered = await rooms.broadcast("group:1", {"type": "group:userJoined"}, exclude=[alice.id])

    assert delivered == 1
    assert alice.websocket.sent == []
    assert bob.websocket.sent == [{"type": "group:userJoined"}]


@pytest.mark.anyio("asyncio")
async def test_leave_all_drops_every_room():
    rooms = RoomDirectory()
    connection = make_connection(1)
    await rooms.join(connection, "private:1-2", "private")
    await rooms.join(connection, "group:3", "group")

    left = await rooms.leave_all(connection)

    assert sorted(left) == ["group:3", "private:1-2"]
    assert await rooms.members("private:1-2") == []
    assert await rooms.rooms_of(connection) == []
    assert await rooms.leave(connection, "group:3") is False


@pytest.mark.anyio("asyncio")
async def test_typing_snapshot_is_sorted_by_display_name():
    typing = TypingAggregator(10)

    await typing.start("group:1", 2, "bob")
    users = await typing.start("group:1", 1, "Alice")

    assert users == [{"id": 1, "displayName": "Alice"}, {"id": 2, "displayName": "bob"}]


@pytest.mark.anyio("asyncio")
async def test_typing_entries_expire_after_ttl():
    clock = FakeClock()
    typing = TypingAggregator(5, clock=clock)
    await typing.start("private:1-2", 1, "Alice")

    clock.now += 3
    assert await typing.snapshot("private:1-2") == [{"id": 1, "displayName": "Alice"}]

    clock.now += 3
    assert await typing.snapshot("private:1-2") == []


@pytest.mark.anyio("asyncio")
async def test_typing_stop_reports_whether_user_was_typing():
    typing = TypingAggregator(10)
    await typing.start("group:1", 1, "Alice")

    users, removed = await typing.stop("group:1", 1)
    assert users == [] and removed is True

    users, removed = await typing.stop("group:1", 1)
    assert users == [] and removed is False


@pytest.mark.anyio("asyncio")
async def test_clear_user_returns_only_changed_rooms():
    typing = TypingAggregator(10)
    await typing.start("group:1", 1, "Alice")
    await typing.start("group:1", 2, "Bob")
    await typing.start("private:1-2", 1, "Alice")
    await typing.start("group:9", 3, "Carol")

    changed = dict(await typing.clear_user(1))

    assert set(changed) == {"group:1", "private:1-2"}
    assert changed["group:1"] == [{"id": 2, "displayName": "Bob"}]
    assert changed["private:1-2"] == []
    assert await typing.snapshot("group:9") == [{"id": 3, "displayName": "Carol"}]
