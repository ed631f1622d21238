"""Private chat store and the combined chat overview."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.errors import AuthorizationError, NotFoundError, StorageError, ValidationError
from app.database import commit_session
from app.models import (
    ChatGroup,
    ChatType,
    GroupMember,
    Message,
    MessageParticipant,
    PrivateChat,
    PrivateChatParticipant,
    User,
)

logger = logging.getLogger(__name__)

PRIVATE_ROOM_PREFIX = "private:"
GROUP_ROOM_PREFIX = "group:"


def normalize_pair(user_id: int, other_id: int) -> tuple[int, int]:
    return (user_id, other_id) if user_id < other_id else (other_id, user_id)


def pair_key(user_id: int, other_id: int) -> str:
    low, high = normalize_pair(int(user_id), int(other_id))
    return f"{low}-{high}"


def canonical_room_key(user_id: int, other_id: int) -> str:
    """Room address shared by both participants regardless of who joins first."""

    return PRIVATE_ROOM_PREFIX + pair_key(user_id, other_id)


def group_room_key(group_id: int) -> str:
    return f"{GROUP_ROOM_PREFIX}{group_id}"


def room_kind(room_key: str) -> ChatType | None:
    if room_key.startswith(PRIVATE_ROOM_PREFIX):
        return ChatType.PRIVATE
    if room_key.startswith(GROUP_ROOM_PREFIX):
        return ChatType.GROUP
    return None


def private_pair_scope(user_id: int, other_id: int):
    """Filter selecting the private messages exchanged between two users."""

    return and_(
        Message.chat_type == ChatType.PRIVATE,
        or_(
            and_(Message.sender_id == user_id, Message.recipient_id == other_id),
            and_(Message.sender_id == other_id, Message.recipient_id == user_id),
        ),
    )


def find_active_private_chat(db: Session, user_id: int, other_id: int) -> PrivateChat | None:
    stmt = (
        select(PrivateChat)
        .where(PrivateChat.active_key == pair_key(user_id, other_id))
        .options(selectinload(PrivateChat.participants))
    )
    return db.execute(stmt).scalar_one_or_none()


def find_or_create_private_chat(db: Session, user: User, other_id: int) -> tuple[PrivateChat, bool]:
    """Return the active chat for the pair, creating it on first contact.

    Creation relies on the unique ``active_key`` column: when two requests race,
    the loser's insert fails and it re-reads the winner's row.
    """

    if other_id == user.id:
        raise ValidationError("You cannot start a chat with yourself")
    if db.get(User, other_id) is None:
        raise NotFoundError("Recipient not found")

    chat = find_active_private_chat(db, user.id, other_id)
    if chat is not None:
        return chat, False

    user_a_id, user_b_id = normalize_pair(user.id, other_id)
    chat = PrivateChat(
        user_a_id=user_a_id,
        user_b_id=user_b_id,
        active_key=pair_key(user_a_id, user_b_id),
        is_active=True,
    )
    chat.participants = [
        PrivateChatParticipant(user_id=user_a_id),
        PrivateChatParticipant(user_id=user_b_id),
    ]
    db.add(chat)
    try:
        commit_session(db)
    except IntegrityError:
        chat = find_active_private_chat(db, user.id, other_id)
        if chat is None:
            raise StorageError() from None
        return chat, False
    logger.info("Created private chat %s for users %s and %s", chat.id, user_a_id, user_b_id)
    return chat, True


def get_private_chat_for_participant(db: Session, chat_id: int, user_id: int) -> PrivateChat:
    chat = db.get(PrivateChat, chat_id)
    if chat is None or not chat.is_active:
        raise NotFoundError("Chat not found")
    if not chat.has_participant(user_id):
        raise AuthorizationError("You are not a participant in this chat")
    return chat


def stamp_private_read(db: Session, chat: PrivateChat, user_id: int, *, commit: bool = True) -> None:
    db.execute(
        update(PrivateChatParticipant)
        .where(
            PrivateChatParticipant.chat_id == chat.id,
            PrivateChatParticipant.user_id == user_id,
        )
        .values(last_read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if commit:
        commit_session(db)


def toggle_block(db: Session, chat: PrivateChat, user_id: int) -> bool:
    """Flip the caller's block against the other participant; returns the new state."""

    status = chat.status_for(user_id)
    if status is None:
        raise AuthorizationError("You are not a participant in this chat")
    status.is_blocked = not status.is_blocked
    commit_session(db)
    return status.is_blocked


def delete_private_chat(db: Session, chat: PrivateChat) -> None:
    """Soft-delete the chat; messages stay, and the pair may start a new chat."""

    chat.is_active = False
    chat.active_key = None
    commit_session(db)


def list_private_chats(db: Session, user_id: int) -> list[PrivateChat]:
    stmt = (
        select(PrivateChat)
        .where(
            PrivateChat.is_active.is_(True),
            or_(PrivateChat.user_a_id == user_id, PrivateChat.user_b_id == user_id),
        )
        .options(
            selectinload(PrivateChat.participants),
            selectinload(PrivateChat.user_a),
            selectinload(PrivateChat.user_b),
        )
    )
    chats = list(db.execute(stmt).scalars())
    chats.sort(key=lambda chat: _activity_key(chat.last_message_at, chat.created_at), reverse=True)
    return chats


def list_member_groups(db: Session, user_id: int) -> list[ChatGroup]:
    stmt = (
        select(ChatGroup)
        .join(GroupMember, GroupMember.group_id == ChatGroup.id)
        .where(GroupMember.user_id == user_id, ChatGroup.is_active.is_(True))
        .options(selectinload(ChatGroup.members).selectinload(GroupMember.user))
    )
    groups = list(db.execute(stmt).scalars().unique())
    groups.sort(key=lambda group: _activity_key(group.last_message_at, group.created_at), reverse=True)
    return groups


def list_all_chats(db: Session, user_id: int) -> list[PrivateChat | ChatGroup]:
    """Private chats and groups of *user_id*, most recently active first."""

    chats: list[PrivateChat | ChatGroup] = [*list_private_chats(db, user_id), *list_member_groups(db, user_id)]
    chats.sort(key=lambda chat: _activity_key(chat.last_message_at, chat.created_at), reverse=True)
    return chats


def search_chats(
    db: Session, user_id: int, query: str, *, message_limit: int = 10
) -> tuple[list[PrivateChat], list[ChatGroup], list[Message]]:
    """Match contacts by name, groups by name or description and messages by text."""

    term = query.strip()
    if not term:
        raise ValidationError("Search query is required")
    needle = term.lower()
    pattern = f"%{needle}%"

    contacts = []
    for chat in list_private_chats(db, user_id):
        other = chat.user_b if chat.user_a_id == user_id else chat.user_a
        if needle in other.login.lower() or needle in (other.display_name or "").lower():
            contacts.append(chat)

    groups = [
        group
        for group in list_member_groups(db, user_id)
        if needle in group.name.lower() or needle in (group.description or "").lower()
    ]

    message_stmt = (
        select(Message)
        .join(MessageParticipant, MessageParticipant.message_id == Message.id)
        .where(MessageParticipant.user_id == user_id, func.lower(Message.text).like(pattern))
        .options(selectinload(Message.sender))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(message_limit)
    )
    messages = list(db.execute(message_stmt).scalars())
    return contacts, groups, messages


def _activity_key(last_message_at: datetime | None, created_at: datetime | None) -> datetime:
    moment = last_message_at or created_at or datetime.min
    return moment.replace(tzinfo=None)
