"""Conversion of ORM rows into the camelCase contracts clients receive."""

from __future__ import annotations

from datetime import datetime

from app.models import ChatGroup, ChatNotification, ChatType, GroupMember, Message, PrivateChat, User
from app.schemas.chat import (
    AttachmentRead,
    ChatSummary,
    GroupMemberOut,
    GroupOut,
    GroupSettingsData,
    LastMessage,
    MessageOut,
    NotificationChat,
    NotificationContent,
    NotificationOut,
    PrivateChatOut,
    ReadReceipt,
    SearchMessageHit,
    UserSummary,
)
from app.services.chats import canonical_room_key, group_room_key


def serialize_user(user: User) -> UserSummary:
    return UserSummary(
        id=user.id,
        login=user.login,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )


def _last_message(text: str | None, sender_id: int | None, sent_at: datetime | None) -> LastMessage | None:
    if sent_at is None:
        return None
    return LastMessage(text=text or "", sender_id=sender_id, sent_at=sent_at)


def serialize_message(message: Message) -> MessageOut:
    return MessageOut(
        id=message.id,
        chat_type=message.chat_type,
        chat_id=message.chat_id,
        sender=serialize_user(message.sender),
        recipient_id=message.recipient_id,
        group_id=message.group_id,
        text=message.text,
        attachments=[
            AttachmentRead(type=item.type, url=item.url, name=item.name, size=item.size)
            for item in message.attachments
        ],
        read_by=[ReadReceipt(user_id=read.user_id, read_at=read.read_at) for read in message.reads],
        created_at=message.created_at,
    )


def serialize_private_chat(chat: PrivateChat, viewer_id: int) -> PrivateChatOut:
    """Render a private chat from *viewer_id*'s side.

    ``isBlocked`` is the viewer's own block; ``blockedBy`` tells whether the
    other participant blocked the viewer.
    """

    other_id = chat.other_participant_id(viewer_id)
    own = chat.status_for(viewer_id)
    other = chat.status_for(other_id)
    return PrivateChatOut(
        id=chat.id,
        room_id=canonical_room_key(chat.user_a_id, chat.user_b_id),
        participants=[serialize_user(chat.user_a), serialize_user(chat.user_b)],
        last_message=_last_message(chat.last_message_text, chat.last_message_sender_id, chat.last_message_at),
        is_blocked=bool(own and own.is_blocked),
        blocked_by=bool(other and other.is_blocked),
        is_active=chat.is_active,
        created_at=chat.created_at,
    )


def serialize_member(member: GroupMember) -> GroupMemberOut:
    return GroupMemberOut(
        user=serialize_user(member.user),
        role=member.role,
        joined_at=member.joined_at,
        last_read_at=member.last_read_at,
    )


def serialize_group(group: ChatGroup) -> GroupOut:
    return GroupOut(
        id=group.id,
        room_id=group_room_key(group.id),
        name=group.name,
        description=group.description,
        avatar_url=group.avatar_url,
        creator_id=group.creator_id,
        settings=GroupSettingsData(
            send_messages=group.send_messages,
            add_members=group.add_members,
            remove_members=group.remove_members,
            is_discoverable=group.is_discoverable,
        ),
        members=[serialize_member(member) for member in group.members],
        is_active=group.is_active,
        is_virtual=group.is_virtual,
        last_message=_last_message(group.last_message_text, group.last_message_sender_id, group.last_message_at),
        created_at=group.created_at,
    )


def summarize_chat(chat: PrivateChat | ChatGroup, viewer_id: int) -> ChatSummary:
    """One row of the combined chat list."""

    last_message = _last_message(chat.last_message_text, chat.last_message_sender_id, chat.last_message_at)
    if isinstance(chat, ChatGroup):
        member = chat.member_for(viewer_id)
        return ChatSummary(
            id=chat.id,
            type=ChatType.GROUP,
            room_id=group_room_key(chat.id),
            name=chat.name,
            avatar_url=chat.avatar_url,
            description=chat.description,
            member_count=len(chat.members),
            last_message=last_message,
            last_read_at=member.last_read_at if member is not None else None,
        )

    other = chat.user_b if chat.user_a_id == viewer_id else chat.user_a
    own = chat.status_for(viewer_id)
    theirs = chat.status_for(other.id)
    return ChatSummary(
        id=chat.id,
        type=ChatType.PRIVATE,
        room_id=canonical_room_key(chat.user_a_id, chat.user_b_id),
        name=other.name,
        avatar_url=other.avatar_url,
        member_count=2,
        last_message=last_message,
        last_read_at=own.last_read_at if own is not None else None,
        is_blocked=bool(own and own.is_blocked),
        blocked_by=bool(theirs and theirs.is_blocked),
    )


def serialize_search_hit(message: Message) -> SearchMessageHit:
    return SearchMessageHit(
        id=message.id,
        chat_type=message.chat_type,
        chat_id=message.chat_id,
        text=message.text,
        sender=serialize_user(message.sender),
        created_at=message.created_at,
    )


def serialize_notification(notification: ChatNotification) -> NotificationOut:
    chat = None
    if notification.chat_id is not None and notification.chat_kind is not None:
        chat = NotificationChat(id=notification.chat_id, kind=notification.chat_kind, name=notification.chat_name)
    return NotificationOut(
        id=notification.id,
        type=notification.type,
        sender=serialize_user(notification.sender) if notification.sender is not None else None,
        message_id=notification.message_id,
        chat=chat,
        content=NotificationContent(text=notification.content_text, preview=notification.content_preview),
        meta=notification.meta,
        read=notification.is_read,
        read_at=notification.read_at,
        delivered=notification.delivered,
        actioned=notification.actioned,
        created_at=notification.created_at,
    )
