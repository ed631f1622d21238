"""Notification sink: durable fan-out records for chat and group events.

Helpers that only stage rows (``notify``, ``notify_many``,
``mark_read_for_chat``) run inside the caller's transaction; the
request-level operations commit on their own.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.errors import NotFoundError
from app.database import commit_session
from app.models import ChatNotification, ChatType, NotificationType
from app.monitoring.metrics import chat_notifications_total

settings = get_settings()

logger = logging.getLogger(__name__)


def preview_text(text: str | None, limit: int | None = None) -> str:
    """Shorten *text* for notification previews."""

    limit = limit or settings.chat_notification_preview_length
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def retention_cutoff(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=settings.chat_notification_retention_days)


def _visible(recipient_id: int) -> list[Any]:
    return [
        ChatNotification.recipient_id == recipient_id,
        ChatNotification.is_deleted.is_(False),
        ChatNotification.created_at >= retention_cutoff(),
    ]


def notify(
    db: Session,
    *,
    recipient_id: int,
    kind: NotificationType,
    text: str,
    sender_id: int | None = None,
    message_id: int | None = None,
    chat_id: int | None = None,
    chat_kind: ChatType | None = None,
    chat_name: str | None = None,
    preview: str | None = None,
    meta: dict[str, Any] | None = None,
) -> ChatNotification:
    notification = ChatNotification(
        recipient_id=recipient_id,
        type=kind,
        sender_id=sender_id,
        message_id=message_id,
        chat_id=chat_id,
        chat_kind=chat_kind,
        chat_name=chat_name,
        content_text=text,
        content_preview=preview,
        meta=meta,
    )
    db.add(notification)
    chat_notifications_total.labels(kind.value).inc()
    return notification


def notify_many(
    db: Session,
    recipient_ids: Iterable[int],
    *,
    exclude: Iterable[int] = (),
    **fields: Any,
) -> list[ChatNotification]:
    """Stage the same notification for every recipient not in *exclude*."""

    skipped = set(exclude)
    created: list[ChatNotification] = []
    for recipient_id in dict.fromkeys(recipient_ids):
        if recipient_id in skipped:
            continue
        created.append(notify(db, recipient_id=recipient_id, **fields))
    return created


def mark_read_for_chat(db: Session, user_id: int, chat_id: int, chat_kind: ChatType) -> int:
    result = db.execute(
        update(ChatNotification)
        .where(
            ChatNotification.recipient_id == user_id,
            ChatNotification.chat_id == chat_id,
            ChatNotification.chat_kind == chat_kind,
            ChatNotification.is_read.is_(False),
        )
        .values(is_read=True, read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _get_visible(db: Session, user_id: int, notification_id: int) -> ChatNotification:
    stmt = select(ChatNotification).where(ChatNotification.id == notification_id, *_visible(user_id))
    notification = db.execute(stmt).scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


def list_notifications(
    db: Session,
    user_id: int,
    *,
    offset: int = 0,
    limit: int = 20,
    unread_only: bool = False,
) -> tuple[list[ChatNotification], int]:
    conditions = _visible(user_id)
    if unread_only:
        conditions.append(ChatNotification.is_read.is_(False))
    total = db.execute(select(func.count(ChatNotification.id)).where(*conditions)).scalar_one()
    stmt = (
        select(ChatNotification)
        .where(*conditions)
        .options(selectinload(ChatNotification.sender))
        .order_by(ChatNotification.created_at.desc(), ChatNotification.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(db.execute(stmt).scalars()), int(total)


def unread_count(db: Session, user_id: int) -> int:
    """Count unread notifications that are still inside the retention window."""

    stmt = select(func.count(ChatNotification.id)).where(
        *_visible(user_id), ChatNotification.is_read.is_(False)
    )
    return int(db.execute(stmt).scalar_one())


def mark_read(db: Session, user_id: int, notification_id: int) -> ChatNotification:
    notification = _get_visible(db, user_id, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        commit_session(db)
    return notification


def mark_all_read(db: Session, user_id: int) -> int:
    result = db.execute(
        update(ChatNotification)
        .where(*_visible(user_id), ChatNotification.is_read.is_(False))
        .values(is_read=True, read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    commit_session(db)
    return result.rowcount or 0


def mark_delivered(db: Session, notification_ids: Iterable[int]) -> int:
    ids = list(notification_ids)
    if not ids:
        return 0
    result = db.execute(
        update(ChatNotification)
        .where(ChatNotification.id.in_(ids), ChatNotification.delivered.is_(False))
        .values(delivered=True, delivered_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    commit_session(db)
    return result.rowcount or 0


def soft_delete(db: Session, user_id: int, notification_id: int) -> None:
    notification = _get_visible(db, user_id, notification_id)
    notification.is_deleted = True
    commit_session(db)


def soft_delete_all(db: Session, user_id: int) -> int:
    result = db.execute(
        update(ChatNotification)
        .where(ChatNotification.recipient_id == user_id, ChatNotification.is_deleted.is_(False))
        .values(is_deleted=True)
        .execution_options(synchronize_session=False)
    )
    commit_session(db)
    return result.rowcount or 0


def purge_expired(db: Session, now: datetime | None = None) -> int:
    """Physically remove notifications older than the retention window."""

    result = db.execute(
        delete(ChatNotification)
        .where(ChatNotification.created_at < retention_cutoff(now))
        .execution_options(synchronize_session=False)
    )
    commit_session(db)
    removed = result.rowcount or 0
    if removed:
        logger.info("Purged %s expired chat notifications", removed)
    return removed
