"""Message send, read-state and delete transitions.

``send_message`` is the only write path for new messages; the realtime router
and both HTTP routes go through it, so the persisted rows do not depend on the
transport a client used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import exists, func, insert, literal, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.types import DateTime, Integer

from app.config import get_settings
from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.database import commit_session
from app.models import (
    ChatGroup,
    ChatNotification,
    ChatType,
    GroupMember,
    GroupPermission,
    GroupRole,
    Message,
    MessageAttachment,
    MessageParticipant,
    MessageRead,
    PrivateChat,
    PrivateChatParticipant,
    User,
)
from app.schemas.chat import AttachmentPayload, SendMessageRequest
from app.services import notifications
from app.services.chats import (
    canonical_room_key,
    get_private_chat_for_participant,
    group_room_key,
    private_pair_scope,
)

settings = get_settings()

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SentMessage:
    """A persisted message plus the routing facts the router needs."""

    message: Message
    room: str
    chat_id: int
    chat_type: ChatType
    chat_name: str | None
    recipient_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class DeletedMessage:
    message_id: int
    room: str
    chat_id: int
    chat_type: ChatType
    last_message: Message | None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_content(text: str | None, attachments: list[AttachmentPayload]) -> str:
    """Return the text to store; empty text is only allowed with attachments."""

    text = text or ""
    if not text.strip() and not attachments:
        raise ValidationError("Message must contain text or attachments")
    if len(text) > settings.chat_message_max_length:
        raise ValidationError(
            f"Message cannot exceed {settings.chat_message_max_length} characters"
        )
    return text


def _build_message(
    sender: User,
    text: str,
    attachments: list[AttachmentPayload],
    participant_ids: list[int],
    **target: int | ChatType | None,
) -> Message:
    now = _now()
    message = Message(sender_id=sender.id, text=text, created_at=now, **target)
    message.attachments = [
        MessageAttachment(position=index, type=item.type, url=item.url, name=item.name, size=item.size)
        for index, item in enumerate(attachments)
    ]
    message.participants = [MessageParticipant(user_id=user_id) for user_id in dict.fromkeys(participant_ids)]
    message.reads = [MessageRead(user_id=sender.id, read_at=now)]
    return message


def _cache_last_message(
    db: Session,
    model: type[PrivateChat] | type[ChatGroup],
    chat_id: int,
    message: Message,
) -> None:
    # Conditional so a slower writer never replaces a newer preview.
    db.execute(
        update(model)
        .where(
            model.id == chat_id,
            or_(model.last_message_at.is_(None), model.last_message_at <= message.created_at),
        )
        .values(
            last_message_text=message.text,
            last_message_sender_id=message.sender_id,
            last_message_at=message.created_at,
        )
        .execution_options(synchronize_session=False)
    )


def send_message(db: Session, sender: User, command: SendMessageRequest) -> SentMessage:
    text = _validate_content(command.text, command.attachments)

    if command.chat_type == ChatType.PRIVATE:
        chat = db.get(PrivateChat, command.chat_id)
        if chat is None or not chat.is_active:
            raise NotFoundError("Chat not found")
        if not chat.has_participant(sender.id):
            raise AuthorizationError("You are not a participant in this chat")
        recipient_id = chat.other_participant_id(sender.id)
        recipient_status = chat.status_for(recipient_id)
        if recipient_status is not None and recipient_status.is_blocked:
            raise AuthorizationError("You cannot send messages to this user")

        message = _build_message(
            sender,
            text,
            command.attachments,
            [sender.id, recipient_id],
            chat_type=ChatType.PRIVATE,
            private_chat_id=chat.id,
            recipient_id=recipient_id,
        )
        db.add(message)
        db.flush()
        _cache_last_message(db, PrivateChat, chat.id, message)
        commit_session(db)
        return SentMessage(
            message=message,
            room=canonical_room_key(sender.id, recipient_id),
            chat_id=chat.id,
            chat_type=ChatType.PRIVATE,
            chat_name=None,
            recipient_ids=[recipient_id],
        )

    group = db.get(ChatGroup, command.chat_id)
    if group is None or not group.is_active:
        raise NotFoundError("Group not found")
    member = group.member_for(sender.id)
    if member is None:
        raise AuthorizationError("You are not a member of this group")
    if group.send_messages == GroupPermission.ADMINS_ONLY and member.role != GroupRole.ADMIN:
        raise AuthorizationError("Only admins can send messages in this group")

    member_ids = group.member_ids
    message = _build_message(
        sender,
        text,
        command.attachments,
        member_ids,
        chat_type=ChatType.GROUP,
        group_id=group.id,
    )
    db.add(message)
    db.flush()
    _cache_last_message(db, ChatGroup, group.id, message)
    commit_session(db)
    return SentMessage(
        message=message,
        room=group_room_key(group.id),
        chat_id=group.id,
        chat_type=ChatType.GROUP,
        chat_name=group.name,
        recipient_ids=[user_id for user_id in member_ids if user_id != sender.id],
    )


def _insert_missing_receipts(db: Session, user_id: int, criterion: ColumnElement[bool]) -> int:
    """Insert a receipt for every message matching *criterion* the user has not read yet."""

    unread = select(
        Message.id,
        literal(user_id, Integer),
        literal(_now(), DateTime(timezone=True)),
    ).where(
        criterion,
        ~exists().where(MessageRead.message_id == Message.id, MessageRead.user_id == user_id),
    )
    result = db.execute(
        insert(MessageRead.__table__).from_select(["message_id", "user_id", "read_at"], unread)
    )
    return result.rowcount or 0


def _require_participant(db: Session, message: Message, user_id: int) -> None:
    stmt = select(MessageParticipant.id).where(
        MessageParticipant.message_id == message.id,
        MessageParticipant.user_id == user_id,
    )
    if db.execute(stmt).first() is None:
        raise AuthorizationError("You are not a participant in this chat")


def mark_as_read(db: Session, message_id: int, user: User) -> Message:
    """Record that *user* read the message; repeated calls change nothing."""

    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    _require_participant(db, message, user.id)

    try:
        _insert_missing_receipts(db, user.id, Message.id == message_id)
        commit_session(db)
    except IntegrityError:
        # A concurrent request stored the same receipt first.
        db.rollback()
        logger.debug("Receipt for message %s by user %s already exists", message_id, user.id)
    db.refresh(message)
    return message


def _chat_scope(
    db: Session, chat_id: int, chat_type: ChatType, user: User
) -> tuple[ColumnElement[bool], PrivateChatParticipant | GroupMember | None]:
    """Return the message filter of a chat and the caller's read-state row."""

    if chat_type == ChatType.PRIVATE:
        chat = get_private_chat_for_participant(db, chat_id, user.id)
        other_id = chat.other_participant_id(user.id)
        return private_pair_scope(user.id, other_id), chat.status_for(user.id)

    group = db.get(ChatGroup, chat_id)
    if group is None or not group.is_active:
        raise NotFoundError("Group not found")
    member = group.member_for(user.id)
    if member is None:
        raise AuthorizationError("You are not a member of this group")
    return Message.group_id == group.id, member


def mark_all_as_read(db: Session, chat_id: int, chat_type: ChatType, user: User) -> int:
    """Mark every message of a chat read and advance the caller's read marker."""

    criterion, read_state = _chat_scope(db, chat_id, chat_type, user)
    try:
        inserted = _insert_missing_receipts(db, user.id, criterion)
    except IntegrityError:
        db.rollback()
        criterion, read_state = _chat_scope(db, chat_id, chat_type, user)
        inserted = _insert_missing_receipts(db, user.id, criterion)
    if read_state is not None:
        read_state.last_read_at = _now()
    notifications.mark_read_for_chat(db, user.id, chat_id, chat_type)
    commit_session(db)
    return inserted


def fetch_chat_history(
    db: Session,
    chat_id: int,
    chat_type: ChatType,
    user: User,
    *,
    offset: int,
    limit: int,
) -> tuple[list[Message], int]:
    """Return one page of messages, oldest first, marking the page read."""

    criterion, _ = _chat_scope(db, chat_id, chat_type, user)
    total = db.execute(select(func.count(Message.id)).where(criterion)).scalar_one()
    page_ids = list(
        db.execute(
            select(Message.id)
            .where(criterion)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars()
    )
    if page_ids:
        try:
            _insert_missing_receipts(db, user.id, Message.id.in_(page_ids))
            commit_session(db)
        except IntegrityError:
            db.rollback()
            logger.debug("Concurrent receipts while loading history of %s %s", chat_type.value, chat_id)
    stmt = (
        select(Message)
        .where(Message.id.in_(page_ids))
        .options(
            selectinload(Message.sender),
            selectinload(Message.attachments),
            selectinload(Message.reads),
        )
        .order_by(Message.created_at, Message.id)
    )
    return list(db.execute(stmt).scalars()), int(total)


def delete_message(db: Session, message_id: int, user: User) -> DeletedMessage:
    """Delete the caller's message and recompute the chat's cached preview."""

    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError("Message not found")
    if message.sender_id != user.id:
        raise AuthorizationError("You can only delete your own messages")

    chat_type = message.chat_type
    if chat_type == ChatType.PRIVATE:
        other_id = message.recipient_id
        scope = private_pair_scope(message.sender_id, other_id)
        model = PrivateChat
        chat_id = message.private_chat_id
        room = canonical_room_key(message.sender_id, other_id)
    else:
        scope = Message.group_id == message.group_id
        model = ChatGroup
        chat_id = message.group_id
        room = group_room_key(message.group_id)

    db.execute(
        update(ChatNotification)
        .where(ChatNotification.message_id == message.id)
        .values(message_id=None)
        .execution_options(synchronize_session=False)
    )
    db.delete(message)
    db.flush()

    latest = db.execute(
        select(Message).where(scope).order_by(Message.created_at.desc(), Message.id.desc()).limit(1)
    ).scalar_one_or_none()
    if chat_id is not None:
        db.execute(
            update(model)
            .where(model.id == chat_id)
            .values(
                last_message_text=latest.text if latest is not None else None,
                last_message_sender_id=latest.sender_id if latest is not None else None,
                last_message_at=latest.created_at if latest is not None else None,
            )
            .execution_options(synchronize_session=False)
        )
    commit_session(db)
    return DeletedMessage(
        message_id=message_id,
        room=room,
        chat_id=chat_id,
        chat_type=chat_type,
        last_message=latest,
    )


def unread_message_count(db: Session, user_id: int) -> int:
    stmt = (
        select(func.count(MessageParticipant.id))
        .join(Message, Message.id == MessageParticipant.message_id)
        .where(
            MessageParticipant.user_id == user_id,
            Message.sender_id != user_id,
            ~exists().where(MessageRead.message_id == Message.id, MessageRead.user_id == user_id),
        )
    )
    return int(db.execute(stmt).scalar_one())
