"""Unit tests for the group membership state machine."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.models import ChatGroup, ChatNotification, GroupPermission, GroupRole, NotificationType
from app.schemas import GroupCreateRequest, GroupUpdateRequest
from app.services import groups


def _notifications(db_session, recipient_id: int) -> list[ChatNotification]:
    stmt = select(ChatNotification).where(ChatNotification.recipient_id == recipient_id)
    return list(db_session.execute(stmt.order_by(ChatNotification.id)).scalars())


@pytest.fixture()
def people(make_user):
    return {name: make_user(name) for name in ("alice", "bob", "carol", "dave")}


@pytest.fixture()
def group(db_session, people):
    payload = GroupCreateRequest(
        name="  Hiking  ",
        description="Weekend trips",
        members=[people["bob"].id, people["carol"].id],
    )
    return groups.create_group(db_session, people["alice"], payload)


def test_create_group_makes_creator_first_admin(db_session, people, group):
    assert group.name == "Hiking"
    assert group.is_active
    assert group.members[0].user_id == people["alice"].id
    assert group.members[0].role == GroupRole.ADMIN
    assert [member.role for member in group.members[1:]] == [GroupRole.MEMBER, GroupRole.MEMBER]

    bob_inbox = _notifications(db_session, people["bob"].id)
    assert [item.type for item in bob_inbox] == [NotificationType.ADDED_TO_GROUP]
    assert _notifications(db_session, people["alice"].id) == []


def test_create_group_skips_creator_and_unknown_ids(db_session, people):
    payload = GroupCreateRequest(name="Solo", members=[people["alice"].id, 999])
    created = groups.create_group(db_session, people["alice"], payload)

    assert created.member_ids == [people["alice"].id]


def test_create_group_requires_name(db_session, people):
    with pytest.raises(ValidationError):
        groups.create_group(db_session, people["alice"], GroupCreateRequest(name="   "))


def test_create_group_applies_settings_patch(db_session, people):
    payload = GroupCreateRequest.model_validate(
        {"name": "Announcements", "settings": {"sendMessages": "admins_only"}}
    )
    created = groups.create_group(db_session, people["alice"], payload)

    assert created.send_messages == GroupPermission.ADMINS_ONLY
    assert created.add_members == GroupPermission.ADMINS_ONLY


def test_add_members_requires_admin_by_default(db_session, people, group):
    with pytest.raises(AuthorizationError):
        groups.add_members(db_session, group.id, people["bob"], [people["dave"].id])


def test_add_members_allowed_for_members_when_open(db_session, people, group):
    groups.update_group(
        db_session,
        group.id,
        people["alice"],
        GroupUpdateRequest.model_validate({"settings": {"addMembers": "all_members"}}),
    )

    change = groups.add_members(db_session, group.id, people["bob"], [people["dave"].id])

    assert [member.user_id for member in change.added] == [people["dave"].id]
    assert people["dave"].id in change.group.member_ids
    carol_inbox = _notifications(db_session, people["carol"].id)
    assert carol_inbox[-1].type == NotificationType.GROUP_MEMBERS_ADDED
    assert carol_inbox[-1].meta == {"count": 1, "userIds": [people["dave"].id]}


def test_add_existing_members_is_rejected(db_session, people, group):
    with pytest.raises(ValidationError):
        groups.add_members(db_session, group.id, people["alice"], [people["bob"].id])


def test_remove_member_by_admin(db_session, people, group):
    change = groups.remove_member(db_session, group.id, people["alice"], people["bob"].id)

    assert change.removed_user_id == people["bob"].id
    assert people["bob"].id not in change.group.member_ids
    assert _notifications(db_session, people["bob"].id)[-1].type == NotificationType.REMOVED_FROM_GROUP


def test_member_cannot_remove_others(db_session, people, group):
    with pytest.raises(AuthorizationError):
        groups.remove_member(db_session, group.id, people["bob"], people["carol"].id)


def test_admin_cannot_be_removed(db_session, people, group):
    groups.change_member_role(db_session, group.id, people["alice"], people["bob"].id, GroupRole.ADMIN)

    with pytest.raises(AuthorizationError):
        groups.remove_member(db_session, group.id, people["alice"], people["bob"].id)


def test_removing_yourself_is_leaving(db_session, people, group):
    change = groups.remove_member(db_session, group.id, people["carol"], people["carol"].id)

    assert change.removed_user_id == people["carol"].id
    assert people["carol"].id not in change.group.member_ids


def test_last_admin_leaving_promotes_longest_tenured_member(db_session, people, group):
    change = groups.leave_group(db_session, group.id, people["alice"])

    assert change.promoted is not None
    assert change.promoted.user_id == people["bob"].id
    assert change.group.member_for(people["bob"].id).role == GroupRole.ADMIN
    assert _notifications(db_session, people["bob"].id)[-1].type == NotificationType.ADMIN_PROMOTION
    assert _notifications(db_session, people["carol"].id)[-1].type == NotificationType.GROUP_MEMBER_LEFT


def test_leaving_with_another_admin_does_not_promote(db_session, people, group):
    groups.change_member_role(db_session, group.id, people["alice"], people["carol"].id, GroupRole.ADMIN)

    change = groups.leave_group(db_session, group.id, people["alice"])

    assert change.promoted is None
    assert change.group.member_for(people["bob"].id).role == GroupRole.MEMBER


def test_group_without_members_is_deactivated(db_session, people):
    solo = groups.create_group(db_session, people["alice"], GroupCreateRequest(name="Solo"))

    groups.leave_group(db_session, solo.id, people["alice"])

    db_session.expire_all()
    assert db_session.get(ChatGroup, solo.id).is_active is False
    with pytest.raises(NotFoundError):
        groups.get_group_for_member(db_session, solo.id, people["alice"].id)


def test_leave_as_non_member(db_session, people, group):
    with pytest.raises(NotFoundError):
        groups.leave_group(db_session, group.id, people["dave"])


def test_admin_can_demote_another_admin(db_session, people, group):
    groups.change_member_role(db_session, group.id, people["alice"], people["bob"].id, GroupRole.ADMIN)

    demoted = groups.change_member_role(db_session, group.id, people["bob"], people["alice"].id, GroupRole.MEMBER)

    assert demoted.role == GroupRole.MEMBER
    assert [member.user_id for member in demoted.group.admins] == [people["bob"].id]
    assert _notifications(db_session, people["alice"].id)[-1].type == NotificationType.ADMIN_DEMOTION


def test_cannot_change_own_role(db_session, people, group):
    with pytest.raises(AuthorizationError):
        groups.change_member_role(db_session, group.id, people["alice"], people["alice"].id, GroupRole.MEMBER)


def test_role_change_notifies_target(db_session, people, group):
    member = groups.change_member_role(db_session, group.id, people["alice"], people["carol"].id, GroupRole.ADMIN)

    assert member.role == GroupRole.ADMIN
    latest = _notifications(db_session, people["carol"].id)[-1]
    assert latest.type == NotificationType.ADMIN_PROMOTION
    assert latest.meta == {"role": "admin"}


def test_rename_notifies_other_members(db_session, people, group):
    updated = groups.update_group(db_session, group.id, people["alice"], GroupUpdateRequest(name="Climbing"))

    assert updated.name == "Climbing"
    assert _notifications(db_session, people["bob"].id)[-1].type == NotificationType.GROUP_UPDATED


def test_update_requires_admin(db_session, people, group):
    with pytest.raises(AuthorizationError):
        groups.update_group(db_session, group.id, people["bob"], GroupUpdateRequest(name="Mine"))


def test_delete_group_by_member_is_forbidden(db_session, people, group):
    with pytest.raises(AuthorizationError):
        groups.delete_group(db_session, group.id, people["bob"])


def test_delete_group_deactivates_and_notifies(db_session, people, group):
    deleted = groups.delete_group(db_session, group.id, people["alice"])

    assert deleted.is_active is False
    assert _notifications(db_session, people["carol"].id)[-1].type == NotificationType.GROUP_REMOVED
    with pytest.raises(NotFoundError):
        groups.get_group_for_member(db_session, group.id, people["bob"].id)


def test_list_user_groups_pages_active_groups(db_session, people, group):
    groups.create_group(db_session, people["bob"], GroupCreateRequest(name="Chess"))

    found, total = groups.list_user_groups(db_session, people["bob"].id, offset=0, limit=1)

    assert total == 2
    assert len(found) == 1
