"""Request and response contracts for the chat HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, constr
from pydantic.alias_generators import to_camel

from app.models.enums import ChatType, GroupPermission, GroupRole, NotificationType

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model exchanging camelCase keys with clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ApiResponse(BaseModel, Generic[T]):
    """Envelope used by every ``/api/chat`` route."""

    success: bool = True
    message: str | None = None
    data: T | None = None


class AttachmentPayload(CamelModel):
    """Attachment reference produced by the upload collaborator.

    Client-side bookkeeping keys (local uri, upload progress) are ignored.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    type: constr(strip_whitespace=True, min_length=1, max_length=32)
    url: constr(min_length=1)
    name: str | None = None
    size: int | None = Field(default=None, ge=0)


class SendMessageRequest(CamelModel):
    """Body shared by ``POST /chat/messages`` and its HTTP fallback twin."""

    chat_id: int
    chat_type: ChatType
    text: str | None = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class MarkAllReadRequest(CamelModel):
    chat_id: int
    chat_type: ChatType


class UserSummary(CamelModel):
    id: int
    login: str
    display_name: str | None = None
    avatar_url: str | None = None


class AttachmentRead(CamelModel):
    type: str
    url: str
    name: str | None = None
    size: int | None = None


class ReadReceipt(CamelModel):
    user_id: int
    read_at: datetime


class MessageOut(CamelModel):
    id: int
    chat_type: ChatType
    chat_id: int | None = None
    sender: UserSummary
    recipient_id: int | None = None
    group_id: int | None = None
    text: str
    attachments: list[AttachmentRead] = Field(default_factory=list)
    read_by: list[ReadReceipt] = Field(default_factory=list)
    created_at: datetime


class LastMessage(CamelModel):
    text: str
    sender_id: int | None = None
    sent_at: datetime


class PrivateChatRequest(CamelModel):
    recipient_id: int


class PrivateChatOut(CamelModel):
    id: int
    type: ChatType = ChatType.PRIVATE
    room_id: str
    participants: list[UserSummary]
    last_message: LastMessage | None = None
    is_blocked: bool = False
    blocked_by: bool = False
    is_active: bool = True
    created_at: datetime


class GroupSettingsData(CamelModel):
    send_messages: GroupPermission = GroupPermission.ALL_MEMBERS
    add_members: GroupPermission = GroupPermission.ADMINS_ONLY
    remove_members: GroupPermission = GroupPermission.ADMINS_ONLY
    is_discoverable: bool = True


class GroupSettingsPatch(CamelModel):
    """Partial settings update; omitted fields keep their stored value."""

    send_messages: GroupPermission | None = None
    add_members: GroupPermission | None = None
    remove_members: GroupPermission | None = None
    is_discoverable: bool | None = None


class GroupCreateRequest(CamelModel):
    name: str
    description: str = ""
    avatar_url: str | None = None
    members: list[int] = Field(default_factory=list)
    settings: GroupSettingsPatch | None = None


class GroupUpdateRequest(CamelModel):
    name: str | None = None
    description: str | None = None
    settings: GroupSettingsPatch | None = None


class AddMembersRequest(CamelModel):
    members: list[int] = Field(..., min_length=1)


class RoleChangeRequest(CamelModel):
    role: GroupRole


class GroupMemberOut(CamelModel):
    user: UserSummary
    role: GroupRole
    joined_at: datetime
    last_read_at: datetime | None = None


class GroupOut(CamelModel):
    id: int
    type: ChatType = ChatType.GROUP
    room_id: str
    name: str
    description: str
    avatar_url: str | None = None
    creator_id: int | None = None
    settings: GroupSettingsData
    members: list[GroupMemberOut]
    is_active: bool
    is_virtual: bool = False
    last_message: LastMessage | None = None
    created_at: datetime


class ChatSummary(CamelModel):
    """Row of the combined chat overview."""

    id: int
    type: ChatType
    room_id: str
    name: str
    avatar_url: str | None = None
    description: str | None = None
    member_count: int
    last_message: LastMessage | None = None
    last_read_at: datetime | None = None
    is_blocked: bool = False
    blocked_by: bool = False


class Page(CamelModel, Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int
    has_more: bool


class UnreadCounts(CamelModel):
    unread_messages: int
    unread_notifications: int
    total: int


class SearchMessageHit(CamelModel):
    id: int
    chat_type: ChatType
    chat_id: int | None = None
    text: str
    sender: UserSummary
    created_at: datetime


class SearchResults(CamelModel):
    contacts: list[ChatSummary] = Field(default_factory=list)
    groups: list[ChatSummary] = Field(default_factory=list)
    messages: list[SearchMessageHit] = Field(default_factory=list)


class NotificationChat(CamelModel):
    id: int
    kind: ChatType
    name: str | None = None


class NotificationContent(CamelModel):
    text: str
    preview: str | None = None


class NotificationOut(CamelModel):
    id: int
    type: NotificationType
    sender: UserSummary | None = None
    message_id: int | None = None
    chat: NotificationChat | None = None
    content: NotificationContent
    meta: dict[str, Any] | None = None
    read: bool
    read_at: datetime | None = None
    delivered: bool
    actioned: bool
    created_at: datetime


class OnlineUser(CamelModel):
    user_id: int
    status: str
    last_active_at: datetime | None = None
