"""HTTP routes of the chat core, including the realtime send fallback."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from murmur.realtime.managers import get_presence_registry, get_room_directory

from app.api.deps import Pagination, get_current_user
from app.database import get_db
from app.models import ChatType, User
from app.schemas.chat import (
    AddMembersRequest,
    ApiResponse,
    ChatSummary,
    GroupCreateRequest,
    GroupMemberOut,
    GroupOut,
    GroupUpdateRequest,
    MarkAllReadRequest,
    MessageOut,
    NotificationOut,
    OnlineUser,
    Page,
    PrivateChatOut,
    PrivateChatRequest,
    RoleChangeRequest,
    SearchResults,
    SendMessageRequest,
    UnreadCounts,
)
from app.services import chats, groups, messages, notifications
from app.services import presence as presence_service
from app.services.delivery import deliver_message
from app.services.serializers import (
    serialize_group,
    serialize_member,
    serialize_message,
    serialize_notification,
    serialize_private_chat,
    serialize_search_hit,
    summarize_chat,
)

router = APIRouter(prefix="/chat", tags=["chat"])

logger = logging.getLogger(__name__)


def _page(items: list[Any], pagination: Pagination, total: int) -> Page[Any]:
    return Page(
        items=items,
        page=pagination.page,
        limit=pagination.limit,
        total=total,
        has_more=pagination.offset + len(items) < total,
    )


async def _evict(user_ids: Iterable[int], room: str) -> None:
    """Drop the live connections of *user_ids* from *room* after they lost access."""

    registry = get_presence_registry()
    rooms = get_room_directory()
    for user_id in user_ids:
        connection = await registry.lookup(user_id)
        if connection is not None and await rooms.leave(connection, room):
            connection.chat_ids.pop(room, None)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.post("/messages", response_model=ApiResponse[MessageOut], status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[MessageOut]:
    message = await deliver_message(db, current_user, payload, transport="http")
    return ApiResponse(message="Message sent successfully", data=message)


@router.post(
    "/messages/http-fallback",
    response_model=ApiResponse[MessageOut],
    status_code=status.HTTP_201_CREATED,
)
async def send_message_fallback(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[MessageOut]:
    """Same state transition as ``private:message``/``group:message`` over HTTP."""

    message = await deliver_message(db, current_user, payload, transport="http_fallback")
    return ApiResponse(message="Message sent successfully", data=message)


@router.get("/messages/{chat_id}", response_model=ApiResponse[Page[MessageOut]])
def get_chat_messages(
    chat_id: int,
    chat_type: ChatType = Query(..., alias="chatType"),
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[Page[MessageOut]]:
    history, total = messages.fetch_chat_history(
        db,
        chat_id,
        chat_type,
        current_user,
        offset=pagination.offset,
        limit=pagination.limit,
    )
    items = [serialize_message(message) for message in history]
    return ApiResponse(data=_page(items, pagination, total))


@router.put("/messages/read", response_model=ApiResponse[dict])
def mark_all_messages_read(
    payload: MarkAllReadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[dict]:
    count = messages.mark_all_as_read(db, payload.chat_id, payload.chat_type, current_user)
    return ApiResponse(message="Messages marked as read", data={"count": count})


@router.put("/messages/{message_id}/read", response_model=ApiResponse[MessageOut])
def mark_message_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[MessageOut]:
    message = messages.mark_as_read(db, message_id, current_user)
    return ApiResponse(message="Message marked as read", data=serialize_message(message))


@router.delete("/messages/{message_id}", response_model=ApiResponse[dict])
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[dict]:
    deleted = messages.delete_message(db, message_id, current_user)
    last_message = None
    if deleted.last_message is not None:
        last_message = {
            "text": deleted.last_message.text,
            "senderId": deleted.last_message.sender_id,
            "sentAt": deleted.last_message.created_at.isoformat(),
        }
    return ApiResponse(
        message="Message deleted successfully",
        data={
            "messageId": deleted.message_id,
            "chatId": deleted.chat_id,
            "chatType": deleted.chat_type.value,
            "lastMessage": last_message,
        },
    )


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------


@router.get("/all", response_model=ApiResponse[Page[ChatSummary]])
def list_chats(
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[Page[ChatSummary]]:
    everything = chats.list_all_chats(db, current_user.id)
    window = everything[pagination.offset : pagination.offset + pagination.limit]
    items = [summarize_chat(chat, current_user.id) for chat in window]
    return ApiResponse(data=_page(items, pagination, len(everything)))


@router.get("/unread", response_model=ApiResponse[UnreadCounts])
def unread_counts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[UnreadCounts]:
    unread_messages = messages.unread_message_count(db, current_user.id)
    unread_notifications = notifications.unread_count(db, current_user.id)
    return ApiResponse(
        data=UnreadCounts(
            unread_messages=unread_messages,
            unread_notifications=unread_notifications,
            total=unread_messages + unread_notifications,
        )
    )


@router.get("/search", response_model=ApiResponse[SearchResults])
def search(
    query: str = Query(default=""),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[SearchResults]:
    contacts, group_hits, message_hits = chats.search_chats(db, current_user.id, query)
    return ApiResponse(
        data=SearchResults(
            contacts=[summarize_chat(chat, current_user.id) for chat in contacts],
            groups=[summarize_chat(group, current_user.id) for group in group_hits],
            messages=[serialize_search_hit(message) for message in message_hits],
        )
    )


@router.get("/presence/online", response_model=ApiResponse[list[OnlineUser]])
async def online_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[list[OnlineUser]]:
    online_ids = await get_presence_registry().online_user_ids()
    entries = presence_service.list_online(db, online_ids, viewer_id=current_user.id)
    return ApiResponse(data=[OnlineUser.model_validate(entry) for entry in entries])


# ---------------------------------------------------------------------------
# Private chats
# ---------------------------------------------------------------------------


@router.post("/private", response_model=ApiResponse[PrivateChatOut])
def open_private_chat(
    payload: PrivateChatRequest,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[PrivateChatOut]:
    chat, created = chats.find_or_create_private_chat(db, current_user, payload.recipient_id)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return ApiResponse(data=serialize_private_chat(chat, current_user.id))


@router.get("/private", response_model=ApiResponse[list[PrivateChatOut]])
def list_private_chats(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[list[PrivateChatOut]]:
    items = [serialize_private_chat(chat, current_user.id) for chat in chats.list_private_chats(db, current_user.id)]
    return ApiResponse(data=items)


@router.get("/private/{chat_id}", response_model=ApiResponse[PrivateChatOut])
def get_private_chat(
    chat_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[PrivateChatOut]:
    chat = chats.get_private_chat_for_participant(db, chat_id, current_user.id)
    return ApiResponse(data=serialize_private_chat(chat, current_user.id))


@router.put("/private/{chat_id}/block", response_model=ApiResponse[PrivateChatOut])
def toggle_private_block(
    chat_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[PrivateChatOut]:
    chat = chats.get_private_chat_for_participant(db, chat_id, current_user.id)
    blocked = chats.toggle_block(db, chat, current_user.id)
    return ApiResponse(
        message="User blocked" if blocked else "User unblocked",
        data=serialize_private_chat(chat, current_user.id),
    )


@router.delete("/private/{chat_id}", response_model=ApiResponse[None])
async def delete_private_chat(
    chat_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[None]:
    chat = chats.get_private_chat_for_participant(db, chat_id, current_user.id)
    participant_ids = chat.participant_ids
    chats.delete_private_chat(db, chat)
    await _evict(participant_ids, chats.canonical_room_key(*participant_ids))
    return ApiResponse(message="Chat deleted successfully")


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@router.get("/group", response_model=ApiResponse[Page[GroupOut]])
def list_groups(
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[Page[GroupOut]]:
    found, total = groups.list_user_groups(
        db, current_user.id, offset=pagination.offset, limit=pagination.limit
    )
    return ApiResponse(data=_page([serialize_group(group) for group in found], pagination, total))


@router.post("/group", response_model=ApiResponse[GroupOut], status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[GroupOut]:
    group = groups.create_group(db, current_user, payload)
    return ApiResponse(message="Group created successfully", data=serialize_group(group))


@router.get("/group/{group_id}", response_model=ApiResponse[GroupOut])
def get_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[GroupOut]:
    group = groups.get_group_for_member(db, group_id, current_user.id)
    return ApiResponse(data=serialize_group(group))


@router.put("/group/{group_id}", response_model=ApiResponse[GroupOut])
def update_group(
    group_id: int,
    payload: GroupUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[GroupOut]:
    group = groups.update_group(db, group_id, current_user, payload)
    return ApiResponse(message="Group updated successfully", data=serialize_group(group))


@router.post("/group/{group_id}/members", response_model=ApiResponse[GroupOut])
def add_group_members(
    group_id: int,
    payload: AddMembersRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[GroupOut]:
    change = groups.add_members(db, group_id, current_user, payload.members)
    return ApiResponse(
        message=f"{len(change.added)} member(s) added successfully",
        data=serialize_group(change.group),
    )


@router.delete("/group/{group_id}/members/{member_id}", response_model=ApiResponse[GroupOut])
async def remove_group_member(
    group_id: int,
    member_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[GroupOut]:
    change = groups.remove_member(db, group_id, current_user, member_id)
    await _evict([member_id], chats.group_room_key(group_id))
    return ApiResponse(message="Member removed successfully", data=serialize_group(change.group))


@router.put("/group/{group_id}/members/{member_id}/role", response_model=ApiResponse[GroupMemberOut])
def change_member_role(
    group_id: int,
    member_id: int,
    payload: RoleChangeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[GroupMemberOut]:
    member = groups.change_member_role(db, group_id, current_user, member_id, payload.role)
    return ApiResponse(message="Member role updated successfully", data=serialize_member(member))


@router.post("/group/{group_id}/leave", response_model=ApiResponse[None])
async def leave_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[None]:
    groups.leave_group(db, group_id, current_user)
    await _evict([current_user.id], chats.group_room_key(group_id))
    return ApiResponse(message="You have left the group")


@router.delete("/group/{group_id}", response_model=ApiResponse[None])
async def delete_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[None]:
    group = groups.delete_group(db, group_id, current_user)
    await _evict(group.member_ids, chats.group_room_key(group_id))
    return ApiResponse(message="Group deleted successfully")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@router.get("/notifications", response_model=ApiResponse[Page[NotificationOut]])
def list_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    pagination: Pagination = Depends(),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[Page[NotificationOut]]:
    found, total = notifications.list_notifications(
        db,
        current_user.id,
        offset=pagination.offset,
        limit=pagination.limit,
        unread_only=unread_only,
    )
    items = [serialize_notification(notification) for notification in found]
    return ApiResponse(data=_page(items, pagination, total))


@router.put("/notifications/read", response_model=ApiResponse[dict])
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[dict]:
    count = notifications.mark_all_read(db, current_user.id)
    return ApiResponse(message="Notifications marked as read", data={"count": count})


@router.put("/notifications/{notification_id}/read", response_model=ApiResponse[NotificationOut])
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[NotificationOut]:
    notification = notifications.mark_read(db, current_user.id, notification_id)
    return ApiResponse(data=serialize_notification(notification))


@router.delete("/notifications", response_model=ApiResponse[dict])
def delete_all_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[dict]:
    count = notifications.soft_delete_all(db, current_user.id)
    return ApiResponse(message="Notifications deleted", data={"count": count})


@router.delete("/notifications/{notification_id}", response_model=ApiResponse[None])
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApiResponse[None]:
    notifications.soft_delete(db, current_user.id, notification_id)
    return ApiResponse(message="Notification deleted")
