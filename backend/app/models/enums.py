from __future__ import annotations

from enum import Enum


class ChatType(str, Enum):
    """Kind of conversation a message or notification belongs to."""

    PRIVATE = "private"
    GROUP = "group"


class GroupRole(str, Enum):
    """Roles that a user can have inside a group chat."""

    ADMIN = "admin"
    MEMBER = "member"


class GroupPermission(str, Enum):
    """Who may perform a restricted group action."""

    ALL_MEMBERS = "all_members"
    ADMINS_ONLY = "admins_only"


class PresenceStatus(str, Enum):
    """Connectivity indicator stored per user."""

    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    INVISIBLE = "invisible"
    OFFLINE = "offline"


# Statuses a client may pick for itself; offline is derived from the connection.
SELECTABLE_STATUSES = frozenset(
    {PresenceStatus.ONLINE, PresenceStatus.AWAY, PresenceStatus.BUSY, PresenceStatus.INVISIBLE}
)


class NotificationType(str, Enum):
    """Events that produce a chat notification for a recipient."""

    NEW_MESSAGE = "new_message"
    GROUP_INVITATION = "group_invitation"
    MENTION = "mention"
    ADDED_TO_GROUP = "added_to_group"
    REMOVED_FROM_GROUP = "removed_from_group"
    ADMIN_PROMOTION = "admin_promotion"
    ADMIN_DEMOTION = "admin_demotion"
    GROUP_UPDATED = "group_updated"
    GROUP_MEMBERS_ADDED = "group_members_added"
    GROUP_REMOVED = "group_removed"
    GROUP_MEMBER_LEFT = "group_member_left"
    GROUP_ROLE_CHANGED = "group_role_changed"
