"""WebSocket endpoint for realtime chat, presence and typing events."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from murmur.realtime.managers import (
    Connection,
    get_presence_registry,
    get_room_directory,
    get_typing_aggregator,
    safe_send_json,
)

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.core.errors import AuthError, ChatError, StorageError, ValidationError, describe_validation_errors
from app.database import get_db_session
from app.models import ChatType, PresenceStatus, User
from app.monitoring.metrics import realtime_events_total
from app.schemas.chat import SendMessageRequest
from app.schemas.events import (
    ERROR,
    GROUP_JOINED,
    GROUP_USER_JOINED,
    PONG,
    PRIVACY_UPDATED,
    PRIVATE_JOINED,
    STATUS_UPDATED,
    TYPING_UPDATE,
    USER_OFFLINE,
    USER_ONLINE,
    USER_STATUS,
    USERS_ONLINE,
    GroupJoinEvent,
    GroupMessageEvent,
    PingEvent,
    PrivacyUpdateEvent,
    PrivateJoinEvent,
    PrivateMessageEvent,
    StatusUpdateEvent,
    TypingEvent,
    build_event,
    inbound_event_adapter,
)
from app.services import chats, groups
from app.services import presence as presence_service
from app.services.delivery import broadcast_typing, deliver_message
from app.services.presence import DeviceInfo

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

registry = get_presence_registry()
rooms = get_room_directory()
typing = get_typing_aggregator()

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            idle = now - last_activity >= interval
            spaced = last_ping_sent is None or now - last_ping_sent >= interval
            if interval <= 0 or (idle and spaced):
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


async def _resolve_user(websocket: WebSocket) -> User | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        with get_db_session() as db:
            return get_user_from_token(token, db)
    except AuthError as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return None


def _device_from_query(websocket: WebSocket) -> DeviceInfo:
    params = websocket.query_params
    return DeviceInfo(
        device_type=params.get("deviceType"),
        os=params.get("os"),
        browser=params.get("browser"),
        app_version=params.get("appVersion"),
    )


def _acting_user(db: Session, connection: Connection) -> User:
    user = db.get(User, connection.user_id)
    if user is None:
        raise AuthError()
    return user


async def _send_error(connection: Connection, message: str) -> None:
    realtime_events_total.labels(ERROR, "out", "error").inc()
    await connection.send(build_event(ERROR, message=message))


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------


async def _on_private_join(connection: Connection, event: PrivateJoinEvent) -> None:
    with get_db_session() as db:
        user = _acting_user(db, connection)
        chat, _ = chats.find_or_create_private_chat(db, user, event.recipient_id)
        chats.stamp_private_read(db, chat, user.id)
        chat_id = chat.id
    room = chats.canonical_room_key(connection.user_id, event.recipient_id)

    left = await rooms.join(connection, room, ChatType.PRIVATE.value)
    if left is not None:
        connection.chat_ids.pop(left, None)
    connection.chat_ids[room] = chat_id
    await connection.send(build_event(PRIVATE_JOINED, roomId=room, chatId=chat_id))

    users = await typing.snapshot(room)
    if users:
        await connection.send(build_event(TYPING_UPDATE, roomId=room, users=users))


async def _on_private_message(connection: Connection, event: PrivateMessageEvent) -> None:
    command = SendMessageRequest(
        chat_id=event.chat_id,
        chat_type=ChatType.PRIVATE,
        text=event.text,
        attachments=event.attachments,
    )
    with get_db_session() as db:
        sender = _acting_user(db, connection)
        await deliver_message(db, sender, command, transport="realtime", origin=connection)


async def _on_group_join(connection: Connection, event: GroupJoinEvent) -> None:
    with get_db_session() as db:
        group = groups.get_group_for_member(db, event.group_id, connection.user_id)
        group_id = group.id
        groups.stamp_member_read(db, group, connection.user_id)
    room = chats.group_room_key(group_id)

    left = await rooms.join(connection, room, ChatType.GROUP.value)
    if left is not None:
        connection.chat_ids.pop(left, None)
    connection.chat_ids[room] = group_id
    await connection.send(build_event(GROUP_JOINED, roomId=room, groupId=group_id))
    await rooms.broadcast(
        room,
        build_event(
            GROUP_USER_JOINED,
            roomId=room,
            groupId=group_id,
            user={
                "id": connection.user_id,
                "displayName": connection.display_name,
                "avatarUrl": connection.avatar_url,
            },
        ),
        exclude=[connection.id],
    )

    users = await typing.snapshot(room)
    if users:
        await connection.send(build_event(TYPING_UPDATE, roomId=room, users=users))


async def _on_group_message(connection: Connection, event: GroupMessageEvent) -> None:
    command = SendMessageRequest(
        chat_id=event.group_id,
        chat_type=ChatType.GROUP,
        text=event.text,
        attachments=event.attachments,
    )
    with get_db_session() as db:
        sender = _acting_user(db, connection)
        await deliver_message(db, sender, command, transport="realtime", origin=connection)


async def _on_typing(connection: Connection, event: TypingEvent) -> None:
    room = event.room_id
    chat_id = connection.chat_ids.get(room)
    if chat_id is None:
        raise ValidationError("Join the chat before sending typing events")

    if event.type == "typing:start":
        users = await typing.start(room, connection.user_id, connection.display_name)
        with get_db_session() as db:
            presence_service.start_typing(db, connection.user_id, chat_id, chats.room_kind(room))
    else:
        users, removed = await typing.stop(room, connection.user_id)
        with get_db_session() as db:
            presence_service.stop_typing(db, connection.user_id)
        if not removed:
            return
    await broadcast_typing(rooms, room, users, exclude=[connection.id])


async def _on_status_update(connection: Connection, event: StatusUpdateEvent) -> None:
    with get_db_session() as db:
        presence = presence_service.update_status(db, connection.user_id, event.status)
        status_value = presence.status
        visible = presence_service.is_visible(presence)

    was_visible = connection.visible
    connection.visible = visible
    await connection.send(build_event(STATUS_UPDATED, status=status_value.value))
    if visible:
        if not was_visible:
            await registry.broadcast(
                build_event(USER_ONLINE, userId=connection.user_id, status=status_value.value),
                exclude=[connection.user_id],
            )
        await registry.broadcast(
            build_event(USER_STATUS, userId=connection.user_id, status=status_value.value),
            exclude=[connection.user_id],
        )
    elif was_visible and status_value == PresenceStatus.INVISIBLE:
        logger.debug("User %s went invisible; status change not broadcast", connection.user_id)


async def _on_privacy_update(connection: Connection, event: PrivacyUpdateEvent) -> None:
    with get_db_session() as db:
        presence = presence_service.update_privacy(db, connection.user_id, event.settings)
        settings_out = {
            "showOnlineStatus": presence.show_online_status,
            "showLastSeen": presence.show_last_seen,
        }
        connection.visible = presence_service.is_visible(presence)
    await connection.send(build_event(PRIVACY_UPDATED, settings=settings_out))


async def _on_ping(connection: Connection, event: PingEvent) -> None:
    if event.type == "ping":
        await connection.send(build_event(PONG))


_HANDLERS: dict[type, Callable[[Connection, Any], Awaitable[None]]] = {
    PrivateJoinEvent: _on_private_join,
    PrivateMessageEvent: _on_private_message,
    GroupJoinEvent: _on_group_join,
    GroupMessageEvent: _on_group_message,
    TypingEvent: _on_typing,
    StatusUpdateEvent: _on_status_update,
    PrivacyUpdateEvent: _on_privacy_update,
    PingEvent: _on_ping,
}


async def _dispatch(connection: Connection, raw_message: str) -> None:
    try:
        payload = json.loads(raw_message)
    except json.JSONDecodeError:
        await _send_error(connection, "Invalid payload")
        return
    if not isinstance(payload, dict):
        await _send_error(connection, "Event payload must be a JSON object")
        return

    try:
        event = inbound_event_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        await _send_error(connection, describe_validation_errors(exc.errors()))
        return

    realtime_events_total.labels(event.type, "in", "received").inc()
    try:
        await _HANDLERS[type(event)](connection, event)
    except ChatError as exc:
        logger.debug("Event %s from user %s rejected: %s", event.type, connection.user_id, exc.message)
        await _send_error(connection, exc.message)
    except SQLAlchemyError:
        logger.exception("Storage failure while handling %s from user %s", event.type, connection.user_id)
        await _send_error(connection, StorageError().message)


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


async def _open(connection: Connection, device: DeviceInfo) -> None:
    await registry.register(connection)
    with get_db_session() as db:
        presence = presence_service.mark_online(db, connection.user_id, connection.id, device)
        connection.visible = presence_service.is_visible(presence)
        status_value = presence.status.value
        online = presence_service.list_online(
            db, await registry.online_user_ids(), viewer_id=connection.user_id
        )

    if connection.visible:
        await registry.broadcast(
            build_event(USER_ONLINE, userId=connection.user_id, status=status_value),
            exclude=[connection.user_id],
        )
    await connection.send(build_event(USERS_ONLINE, users=online))


async def _close(connection: Connection) -> None:
    """Tear down *connection*; runs once per socket from the endpoint."""

    current = await registry.unregister(connection)
    await rooms.leave_all(connection)
    connection.chat_ids.clear()
    if not current:
        # A newer connection of the same user owns presence and typing state.
        return

    for room, users in await typing.clear_user(connection.user_id):
        await broadcast_typing(rooms, room, users)
    if connection.visible:
        await registry.broadcast(build_event(USER_OFFLINE, userId=connection.user_id))
    with get_db_session() as db:
        presence_service.mark_offline(db, connection.user_id, connection.id)


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """Realtime chat channel for one authenticated user."""

    user = await _resolve_user(websocket)
    if user is None:
        return

    await websocket.accept()
    connection = Connection(
        websocket=websocket,
        user_id=user.id,
        display_name=user.name,
        avatar_url=user.avatar_url,
    )
    realtime_events_total.labels("connection", "in", "open").inc()

    try:
        await _open(connection, _device_from_query(websocket))
        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            await _dispatch(connection, raw_message)
    finally:
        realtime_events_total.labels("connection", "in", "close").inc()
        await _close(connection)
