"""Pydantic schemas for API payloads."""

from .auth import LoginRequest, PushTokenUpdate, Token, UserCreate, UserRead
from .chat import (
    AddMembersRequest,
    ApiResponse,
    AttachmentPayload,
    ChatSummary,
    GroupCreateRequest,
    GroupOut,
    GroupSettingsPatch,
    GroupUpdateRequest,
    MarkAllReadRequest,
    MessageOut,
    NotificationOut,
    PrivateChatOut,
    PrivateChatRequest,
    RoleChangeRequest,
    SendMessageRequest,
    UserSummary,
)

__all__ = [
    "LoginRequest",
    "PushTokenUpdate",
    "Token",
    "UserCreate",
    "UserRead",
    "AddMembersRequest",
    "ApiResponse",
    "AttachmentPayload",
    "ChatSummary",
    "GroupCreateRequest",
    "GroupOut",
    "GroupSettingsPatch",
    "GroupUpdateRequest",
    "MarkAllReadRequest",
    "MessageOut",
    "NotificationOut",
    "PrivateChatOut",
    "PrivateChatRequest",
    "RoleChangeRequest",
    "SendMessageRequest",
    "UserSummary",
]
