"""Persistent presence records backing the realtime connection registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import case, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.database import commit_session
from app.models import ChatType, PresenceStatus, UserPresence
from app.models.enums import SELECTABLE_STATUSES
from app.schemas.chat import OnlineUser
from app.schemas.events import PrivacySettings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeviceInfo:
    device_type: str | None = None
    os: str | None = None
    browser: str | None = None
    app_version: str | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_presence(db: Session, user_id: int) -> UserPresence | None:
    return db.execute(select(UserPresence).where(UserPresence.user_id == user_id)).scalar_one_or_none()


def get_or_create_presence(db: Session, user_id: int) -> UserPresence:
    presence = get_presence(db, user_id)
    if presence is not None:
        return presence
    presence = UserPresence(user_id=user_id, status=PresenceStatus.OFFLINE)
    db.add(presence)
    try:
        commit_session(db)
    except IntegrityError:
        # Another connection of the same user created the row first.
        presence = get_presence(db, user_id)
        if presence is None:
            raise
    return presence


def is_visible(presence: UserPresence | None) -> bool:
    """Whether other users may see this presence as online."""

    if presence is None:
        return True
    return presence.show_online_status and presence.status != PresenceStatus.INVISIBLE


def mark_online(
    db: Session,
    user_id: int,
    connection_id: str,
    device: DeviceInfo | None = None,
) -> UserPresence:
    """Bind the presence record to *connection_id*.

    A user who chose ``invisible`` stays invisible across reconnects; every
    other stored status is reset to ``online``. Device metadata is only
    replaced when the new connection reports a device type.
    """

    presence = get_or_create_presence(db, user_id)
    if presence.status != PresenceStatus.INVISIBLE:
        presence.status = PresenceStatus.ONLINE
    presence.connection_id = connection_id
    presence.last_active_at = _now()
    presence.typing_chat_id = None
    presence.typing_chat_kind = None
    if device is not None and device.device_type:
        presence.device_type = device.device_type
        presence.device_os = device.os
        presence.device_browser = device.browser
        presence.app_version = device.app_version
    commit_session(db)
    return presence


def mark_offline(db: Session, user_id: int, connection_id: str) -> bool:
    """Reset the record to offline if it still points at *connection_id*.

    An ``invisible`` record keeps its status so the next connection stays
    hidden. Returns ``False`` when a newer connection has already taken over.
    """

    result = db.execute(
        update(UserPresence)
        .where(UserPresence.user_id == user_id, UserPresence.connection_id == connection_id)
        .values(
            status=case(
                (UserPresence.status == PresenceStatus.INVISIBLE, UserPresence.status),
                else_=literal(PresenceStatus.OFFLINE, UserPresence.status.type),
            ),
            connection_id=None,
            last_active_at=_now(),
            typing_chat_id=None,
            typing_chat_kind=None,
        )
        .execution_options(synchronize_session=False)
    )
    commit_session(db)
    if not result.rowcount:
        logger.debug("Ignored stale disconnect %s for user %s", connection_id, user_id)
        return False
    return True


def update_status(db: Session, user_id: int, status: str) -> UserPresence:
    try:
        value = PresenceStatus(status)
    except ValueError:
        raise ValidationError("Invalid status") from None
    if value not in SELECTABLE_STATUSES:
        raise ValidationError("Invalid status")

    presence = get_or_create_presence(db, user_id)
    presence.status = value
    presence.last_active_at = _now()
    commit_session(db)
    return presence


def update_privacy(db: Session, user_id: int, settings: PrivacySettings) -> UserPresence:
    presence = get_or_create_presence(db, user_id)
    if settings.show_online_status is not None:
        presence.show_online_status = settings.show_online_status
    if settings.show_last_seen is not None:
        presence.show_last_seen = settings.show_last_seen
    commit_session(db)
    return presence


def start_typing(db: Session, user_id: int, chat_id: int, chat_kind: ChatType) -> None:
    db.execute(
        update(UserPresence)
        .where(UserPresence.user_id == user_id)
        .values(typing_chat_id=chat_id, typing_chat_kind=chat_kind, last_active_at=_now())
        .execution_options(synchronize_session=False)
    )
    commit_session(db)


def stop_typing(db: Session, user_id: int) -> None:
    db.execute(
        update(UserPresence)
        .where(UserPresence.user_id == user_id)
        .values(typing_chat_id=None, typing_chat_kind=None)
        .execution_options(synchronize_session=False)
    )
    commit_session(db)


def list_online(db: Session, user_ids: Iterable[int], *, viewer_id: int | None = None) -> list[dict]:
    """Online entries for *user_ids* that their owners allow others to see."""

    candidates = {int(user_id) for user_id in user_ids}
    if viewer_id is not None:
        candidates.discard(viewer_id)
    if not candidates:
        return []

    stored = {
        presence.user_id: presence
        for presence in db.execute(
            select(UserPresence).where(UserPresence.user_id.in_(candidates))
        ).scalars()
    }
    entries = []
    for user_id in sorted(candidates):
        presence = stored.get(user_id)
        if not is_visible(presence):
            continue
        status = presence.status if presence is not None else PresenceStatus.ONLINE
        if status == PresenceStatus.OFFLINE:
            # The socket is live but the record has not caught up yet.
            status = PresenceStatus.ONLINE
        last_active = presence.last_active_at if presence is not None and presence.show_last_seen else None
        entries.append(OnlineUser(user_id=user_id, status=status.value, last_active_at=last_active).to_wire())
    return entries
