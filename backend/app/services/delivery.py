"""Fan-out of a freshly sent message to rooms, notifications and push."""

from __future__ import annotations

import logging
from typing import Literal

from sqlalchemy.orm import Session

from murmur.realtime.managers import (
    Connection,
    PresenceRegistry,
    RoomDirectory,
    TypingAggregator,
    get_presence_registry,
    get_room_directory,
    get_typing_aggregator,
)

from app.database import commit_session
from app.models import ChatNotification, ChatType, NotificationType, User
from app.monitoring.metrics import chat_messages_total
from app.schemas.chat import MessageOut, SendMessageRequest
from app.schemas.events import GROUP_MESSAGE, NOTIFICATION_MESSAGE, PRIVATE_MESSAGE, TYPING_UPDATE, build_event
from app.services import messages, notifications
from app.services.push import PushGateway, get_push_gateway
from app.services.serializers import serialize_message, serialize_notification

logger = logging.getLogger(__name__)

Transport = Literal["realtime", "http", "http_fallback"]


def _notification_text(sender: User, sent: messages.SentMessage) -> str:
    if sent.chat_type == ChatType.GROUP:
        return f"{sender.name} sent a message in {sent.chat_name}"
    return f"{sender.name} sent you a message"


async def broadcast_typing(
    rooms: RoomDirectory,
    room: str,
    users: list[dict],
    *,
    exclude: list[str] | tuple[str, ...] = (),
) -> None:
    await rooms.broadcast(room, build_event(TYPING_UPDATE, roomId=room, users=users), exclude=exclude)


async def deliver_message(
    db: Session,
    sender: User,
    command: SendMessageRequest,
    *,
    transport: Transport,
    origin: Connection | None = None,
    registry: PresenceRegistry | None = None,
    rooms: RoomDirectory | None = None,
    typing: TypingAggregator | None = None,
    push: PushGateway | None = None,
) -> MessageOut:
    """Persist *command* and route the result to everyone who should see it.

    The message goes to every connection joined to the chat's room. Recipients
    whose current connection is not in that room get a notification row; a
    live recipient also gets a ``notification:message`` event, an offline one
    a push message.
    """

    registry = registry or get_presence_registry()
    rooms = rooms or get_room_directory()
    typing = typing or get_typing_aggregator()
    push = push or get_push_gateway()

    sent = messages.send_message(db, sender, command)
    chat_messages_total.labels(sent.chat_type.value, transport).inc()
    message_out = serialize_message(sent.message)

    event_type = PRIVATE_MESSAGE if sent.chat_type == ChatType.PRIVATE else GROUP_MESSAGE
    await rooms.broadcast(
        sent.room,
        build_event(event_type, roomId=sent.room, chatId=sent.chat_id, message=message_out.to_wire()),
    )

    sender_connection = origin or await registry.lookup(sender.id)
    users, was_typing = await typing.stop(sent.room, sender.id)
    if was_typing:
        exclude = [sender_connection.id] if sender_connection is not None else []
        await broadcast_typing(rooms, sent.room, users, exclude=exclude)

    absent: list[tuple[int, Connection | None]] = []
    for recipient_id in sent.recipient_ids:
        connection = await registry.lookup(recipient_id)
        if connection is not None and await rooms.is_member(connection.id, sent.room):
            continue
        absent.append((recipient_id, connection))
    if not absent:
        return message_out

    text = _notification_text(sender, sent)
    preview = notifications.preview_text(sent.message.text)
    staged: list[tuple[ChatNotification, Connection | None]] = []
    for recipient_id, connection in absent:
        notification = notifications.notify(
            db,
            recipient_id=recipient_id,
            kind=NotificationType.NEW_MESSAGE,
            text=text,
            sender_id=sender.id,
            message_id=sent.message.id,
            chat_id=sent.chat_id,
            chat_kind=sent.chat_type,
            chat_name=sent.chat_name,
            preview=preview,
        )
        staged.append((notification, connection))
    commit_session(db)

    delivered: list[int] = []
    offline: list[int] = []
    for notification, connection in staged:
        if connection is None:
            offline.append(notification.recipient_id)
            continue
        payload = build_event(NOTIFICATION_MESSAGE, notification=serialize_notification(notification).to_wire())
        if await connection.send(payload):
            delivered.append(notification.id)
    if delivered:
        notifications.mark_delivered(db, delivered)

    title = sent.chat_name if sent.chat_type == ChatType.GROUP else sender.name
    body = f"{sender.name}: {preview}" if sent.chat_type == ChatType.GROUP else preview
    data = {"chatId": sent.chat_id, "chatType": sent.chat_type.value, "messageId": sent.message.id}
    for recipient_id in offline:
        recipient = db.get(User, recipient_id)
        if recipient is not None:
            await push.send(recipient, title or "", body or text, data)

    logger.debug(
        "Message %s in %s: %d notified, %d delivered live",
        sent.message.id,
        sent.room,
        len(staged),
        len(delivered),
    )
    return message_out
