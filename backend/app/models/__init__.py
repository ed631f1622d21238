"""Database models package."""

from .base import Base
from .chat import (
    ChatGroup,
    ChatNotification,
    GroupMember,
    Message,
    MessageAttachment,
    MessageParticipant,
    MessageRead,
    PrivateChat,
    PrivateChatParticipant,
    User,
    UserPresence,
)
from .enums import (
    ChatType,
    GroupPermission,
    GroupRole,
    NotificationType,
    PresenceStatus,
)

__all__ = [
    "Base",
    "User",
    "UserPresence",
    "PrivateChat",
    "PrivateChatParticipant",
    "ChatGroup",
    "GroupMember",
    "Message",
    "MessageParticipant",
    "MessageAttachment",
    "MessageRead",
    "ChatNotification",
    "ChatType",
    "GroupPermission",
    "GroupRole",
    "NotificationType",
    "PresenceStatus",
]
