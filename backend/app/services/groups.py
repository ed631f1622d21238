"""Group chat membership state machine.

Invariants kept by every operation here:

* the creator is inserted as the first admin member when a group is built
  (:func:`ensure_creator_admin`);
* while a group has members, at least one of them is an admin; when the last
  admin goes away the longest-tenured remaining member is promoted
  (:func:`promote_successor`);
* a group without members is inactive.

Membership rows are read with ``SELECT ... FOR UPDATE`` so concurrent changes
to the same group serialise on databases that support row locks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.database import commit_session
from app.models import (
    ChatGroup,
    ChatType,
    GroupMember,
    GroupPermission,
    GroupRole,
    NotificationType,
    User,
)
from app.schemas.chat import GroupCreateRequest, GroupSettingsPatch, GroupUpdateRequest
from app.services import notifications

settings = get_settings()

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MembershipChange:
    """Outcome of an operation that adds or removes members."""

    group: ChatGroup
    added: list[GroupMember] = field(default_factory=list)
    removed_user_id: int | None = None
    promoted: GroupMember | None = None


def ensure_creator_admin(group: ChatGroup) -> GroupMember:
    """Make sure the creator is an admin member of *group*.

    A missing creator is inserted in front of every other member; an existing
    one only has its role forced to admin.
    """

    member = group.member_for(group.creator_id)
    if member is not None:
        member.role = GroupRole.ADMIN
        return member
    member = GroupMember(user_id=group.creator_id, role=GroupRole.ADMIN)
    group.members.insert(0, member)
    return member


def promote_successor(db: Session, group: ChatGroup, *, excluding: int | None = None) -> GroupMember | None:
    """Promote the earliest joined member when no admin would remain."""

    remaining = [member for member in group.members if member.user_id != excluding]
    if not remaining or any(member.role == GroupRole.ADMIN for member in remaining):
        return None
    db.flush()
    stmt = select(GroupMember).where(GroupMember.group_id == group.id)
    if excluding is not None:
        stmt = stmt.where(GroupMember.user_id != excluding)
    successor = db.execute(
        stmt.order_by(GroupMember.joined_at, GroupMember.id).limit(1)
    ).scalar_one()
    successor.role = GroupRole.ADMIN
    logger.info("Promoted user %s to admin of group %s", successor.user_id, group.id)
    return successor


def apply_settings(group: ChatGroup, patch: GroupSettingsPatch | None) -> None:
    """Merge *patch* into the stored settings field by field."""

    if patch is None:
        return
    for name, value in patch.model_dump(exclude_none=True).items():
        setattr(group, name, value)


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Group name is required")
    if len(cleaned) > settings.chat_group_name_max_length:
        raise ValidationError(
            f"Group name cannot exceed {settings.chat_group_name_max_length} characters"
        )
    return cleaned


def _clean_description(description: str | None) -> str:
    cleaned = (description or "").strip()
    if len(cleaned) > settings.chat_group_description_max_length:
        raise ValidationError(
            f"Group description cannot exceed {settings.chat_group_description_max_length} characters"
        )
    return cleaned


def _resolve_user_ids(db: Session, user_ids: Iterable[int]) -> list[int]:
    """Keep the ids that belong to existing accounts, preserving request order."""

    requested = list(dict.fromkeys(user_ids))
    if not requested:
        return []
    found = set(db.execute(select(User.id).where(User.id.in_(requested))).scalars())
    missing = [user_id for user_id in requested if user_id not in found]
    if missing:
        logger.warning("Skipping unknown users %s while updating group membership", missing)
    return [user_id for user_id in requested if user_id in found]


def _load_group(db: Session, group_id: int, *, for_update: bool = False) -> ChatGroup:
    stmt = (
        select(ChatGroup)
        .where(ChatGroup.id == group_id, ChatGroup.is_active.is_(True))
        .options(selectinload(ChatGroup.members))
    )
    if for_update:
        stmt = stmt.with_for_update()
    group = db.execute(stmt).scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group not found")
    return group


def _require_member(group: ChatGroup, user_id: int) -> GroupMember:
    member = group.member_for(user_id)
    if member is None:
        raise AuthorizationError("You are not a member of this group")
    return member


def _require_admin(group: ChatGroup, user_id: int, message: str) -> GroupMember:
    member = _require_member(group, user_id)
    if member.role != GroupRole.ADMIN:
        raise AuthorizationError(message)
    return member


def _notify(
    db: Session,
    group: ChatGroup,
    recipients: Iterable[int],
    kind: NotificationType,
    text: str,
    *,
    actor: User | None,
    meta: dict | None = None,
) -> None:
    notifications.notify_many(
        db,
        recipients,
        exclude=[actor.id] if actor is not None else (),
        kind=kind,
        text=text,
        sender_id=actor.id if actor is not None else None,
        chat_id=group.id,
        chat_kind=ChatType.GROUP,
        chat_name=group.name,
        meta=meta,
    )


def get_group_for_member(db: Session, group_id: int, user_id: int) -> ChatGroup:
    group = _load_group(db, group_id)
    _require_member(group, user_id)
    return group


def stamp_member_read(db: Session, group: ChatGroup, user_id: int) -> None:
    db.execute(
        update(GroupMember)
        .where(GroupMember.group_id == group.id, GroupMember.user_id == user_id)
        .values(last_read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    commit_session(db)


def list_user_groups(db: Session, user_id: int, *, offset: int, limit: int) -> tuple[list[ChatGroup], int]:
    base = (
        select(ChatGroup)
        .join(GroupMember, GroupMember.group_id == ChatGroup.id)
        .where(GroupMember.user_id == user_id, ChatGroup.is_active.is_(True))
    )
    total = db.execute(select(func.count()).select_from(base.subquery())).scalar_one()
    stmt = (
        base.options(selectinload(ChatGroup.members).selectinload(GroupMember.user))
        .order_by(ChatGroup.updated_at.desc(), ChatGroup.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars().unique()), int(total)


def create_group(db: Session, creator: User, payload: GroupCreateRequest) -> ChatGroup:
    name = _clean_name(payload.name)
    description = _clean_description(payload.description)
    member_ids = _resolve_user_ids(
        db, (user_id for user_id in payload.members if user_id != creator.id)
    )

    group = ChatGroup(
        name=name,
        description=description,
        avatar_url=payload.avatar_url,
        creator_id=creator.id,
        send_messages=GroupPermission.ALL_MEMBERS,
        add_members=GroupPermission.ADMINS_ONLY,
        remove_members=GroupPermission.ADMINS_ONLY,
        is_discoverable=True,
    )
    apply_settings(group, payload.settings)
    ensure_creator_admin(group)
    db.add(group)
    db.flush()
    for user_id in member_ids:
        group.members.append(GroupMember(user_id=user_id, role=GroupRole.MEMBER))
    db.flush()

    _notify(
        db,
        group,
        member_ids,
        NotificationType.ADDED_TO_GROUP,
        f"{creator.name} added you to {group.name}",
        actor=creator,
    )
    commit_session(db)
    logger.info("User %s created group %s with %s members", creator.id, group.id, len(group.members))
    return group


def add_members(db: Session, group_id: int, actor: User, user_ids: Iterable[int]) -> MembershipChange:
    group = _load_group(db, group_id, for_update=True)
    member = _require_member(group, actor.id)
    if member.role != GroupRole.ADMIN and group.add_members != GroupPermission.ALL_MEMBERS:
        raise AuthorizationError("Only group admins can add members")

    existing = set(group.member_ids)
    candidates = [user_id for user_id in dict.fromkeys(user_ids) if user_id not in existing]
    if not candidates:
        raise ValidationError("All users are already members of this group")

    previous_members = list(group.member_ids)
    added: list[GroupMember] = []
    for user_id in _resolve_user_ids(db, candidates):
        new_member = GroupMember(user_id=user_id, role=GroupRole.MEMBER)
        group.members.append(new_member)
        added.append(new_member)
    if not added:
        return MembershipChange(group=group)
    db.flush()

    added_ids = [item.user_id for item in added]
    _notify(
        db,
        group,
        added_ids,
        NotificationType.ADDED_TO_GROUP,
        f"{actor.name} added you to {group.name}",
        actor=actor,
    )
    count = len(added_ids)
    _notify(
        db,
        group,
        previous_members,
        NotificationType.GROUP_MEMBERS_ADDED,
        f"{actor.name} added {count} new member{'s' if count != 1 else ''} to {group.name}",
        actor=actor,
        meta={"count": count, "userIds": added_ids},
    )
    commit_session(db)
    return MembershipChange(group=group, added=added)


def _depart(db: Session, group: ChatGroup, member: GroupMember) -> GroupMember | None:
    """Drop *member*, promoting a successor first when they are the last admin."""

    promoted = None
    if member.role == GroupRole.ADMIN:
        promoted = promote_successor(db, group, excluding=member.user_id)
    group.members.remove(member)
    db.flush()
    if not group.members:
        group.is_active = False
        logger.info("Group %s has no members left and was deactivated", group.id)
    return promoted


def remove_member(db: Session, group_id: int, actor: User, target_id: int) -> MembershipChange:
    group = _load_group(db, group_id, for_update=True)
    if target_id == actor.id:
        return leave_group(db, group_id, actor, group=group)

    _require_admin(group, actor.id, "Only group admins can remove other members")
    target = group.member_for(target_id)
    if target is None:
        raise NotFoundError("Member not found in this group")
    if target.role == GroupRole.ADMIN:
        raise AuthorizationError("Cannot remove an admin from the group")

    promoted = _depart(db, group, target)
    if promoted is None:
        promoted = promote_successor(db, group)

    target_user = db.get(User, target_id)
    target_name = target_user.name if target_user is not None else "A member"
    notifications.notify(
        db,
        recipient_id=target_id,
        kind=NotificationType.REMOVED_FROM_GROUP,
        text=f"{actor.name} removed you from {group.name}",
        sender_id=actor.id,
        chat_id=group.id,
        chat_kind=ChatType.GROUP,
        chat_name=group.name,
    )
    _notify(
        db,
        group,
        group.member_ids,
        NotificationType.GROUP_MEMBER_LEFT,
        f"{actor.name} removed {target_name} from {group.name}",
        actor=actor,
        meta={"userId": target_id},
    )
    commit_session(db)
    return MembershipChange(group=group, removed_user_id=target_id, promoted=promoted)


def leave_group(db: Session, group_id: int, actor: User, *, group: ChatGroup | None = None) -> MembershipChange:
    group = group or _load_group(db, group_id, for_update=True)
    member = group.member_for(actor.id)
    if member is None:
        raise NotFoundError("You are not a member of this group")

    promoted = _depart(db, group, member)
    if promoted is not None:
        notifications.notify(
            db,
            recipient_id=promoted.user_id,
            kind=NotificationType.ADMIN_PROMOTION,
            text=f"{actor.name} left {group.name}. You are now an admin",
            sender_id=actor.id,
            chat_id=group.id,
            chat_kind=ChatType.GROUP,
            chat_name=group.name,
        )
    _notify(
        db,
        group,
        [user_id for user_id in group.member_ids if promoted is None or user_id != promoted.user_id],
        NotificationType.GROUP_MEMBER_LEFT,
        f"{actor.name} left {group.name}",
        actor=actor,
        meta={"userId": actor.id},
    )
    commit_session(db)
    logger.info("User %s left group %s", actor.id, group.id)
    return MembershipChange(group=group, removed_user_id=actor.id, promoted=promoted)


def change_member_role(db: Session, group_id: int, actor: User, target_id: int, role: GroupRole) -> GroupMember:
    group = _load_group(db, group_id, for_update=True)
    _require_admin(group, actor.id, "Only group admins can change member roles")
    if target_id == actor.id:
        raise AuthorizationError("You cannot change your own role")
    target = group.member_for(target_id)
    if target is None:
        raise NotFoundError("Member not found in this group")
    if target.role == role:
        return target
    if target.role == GroupRole.ADMIN and len(group.admins) == 1:
        raise ConflictError("Cannot demote the last admin. Promote another member to admin first")

    target.role = role
    promoted = role == GroupRole.ADMIN
    notifications.notify(
        db,
        recipient_id=target_id,
        kind=NotificationType.ADMIN_PROMOTION if promoted else NotificationType.ADMIN_DEMOTION,
        text=(
            f"{actor.name} made you an admin of {group.name}"
            if promoted
            else f"{actor.name} removed your admin role in {group.name}"
        ),
        sender_id=actor.id,
        chat_id=group.id,
        chat_kind=ChatType.GROUP,
        chat_name=group.name,
        meta={"role": role.value},
    )
    commit_session(db)
    return target


def update_group(db: Session, group_id: int, actor: User, payload: GroupUpdateRequest) -> ChatGroup:
    group = _load_group(db, group_id, for_update=True)
    _require_admin(group, actor.id, "Only group admins can update group information")

    renamed = False
    if payload.name is not None:
        name = _clean_name(payload.name)
        renamed = name != group.name
        group.name = name
    if payload.description is not None:
        group.description = _clean_description(payload.description)
    apply_settings(group, payload.settings)

    if renamed:
        _notify(
            db,
            group,
            group.member_ids,
            NotificationType.GROUP_UPDATED,
            f"{actor.name} renamed the group to {group.name}",
            actor=actor,
        )
    commit_session(db)
    return group


def delete_group(db: Session, group_id: int, actor: User) -> ChatGroup:
    group = _load_group(db, group_id, for_update=True)
    if not group.is_virtual:
        member = group.member_for(actor.id)
        is_admin = member is not None and member.role == GroupRole.ADMIN
        if not is_admin and group.creator_id != actor.id:
            raise AuthorizationError("Only group admins or the creator can delete this group")

    group.is_active = False
    _notify(
        db,
        group,
        group.member_ids,
        NotificationType.GROUP_REMOVED,
        f"{actor.name} deleted the group {group.name}",
        actor=actor,
    )
    commit_session(db)
    logger.info("User %s deleted group %s", actor.id, group.id)
    return group
