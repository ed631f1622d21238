from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base
from app.models.enums import (
    ChatType,
    GroupPermission,
    GroupRole,
    NotificationType,
    PresenceStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls: type, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda enum_cls: [member.value for member in enum_cls],
    )


class User(Base):
    """Account owned by the identity collaborator; the chat core only reads it."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    login: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128))
    avatar_url: Mapped[str | None] = mapped_column(String(512))
    push_token: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    presence: Mapped["UserPresence | None"] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )

    @property
    def name(self) -> str:
        return self.display_name or self.login


class PrivateChat(Base):
    """Two-party conversation; at most one active row per unordered pair."""

    __tablename__ = "private_chats"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_a_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user_b_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # "<low>-<high>" while active, NULL once soft-deleted so the pair can start over.
    active_key: Mapped[str | None] = mapped_column(String(64), unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_message_text: Mapped[str | None] = mapped_column(Text)
    last_message_sender_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    user_a: Mapped[User] = relationship(foreign_keys=[user_a_id])
    user_b: Mapped[User] = relationship(foreign_keys=[user_b_id])
    participants: Mapped[list["PrivateChatParticipant"]] = relationship(
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="PrivateChatParticipant.user_id",
    )

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.user_a_id, self.user_b_id)

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_participant_id(self, user_id: int) -> int:
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id

    def status_for(self, user_id: int) -> "PrivateChatParticipant | None":
        return next((item for item in self.participants if item.user_id == user_id), None)


class PrivateChatParticipant(Base):
    """Per-participant read and block state of a private chat."""

    __tablename__ = "private_chat_participants"
    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_private_chat_participant"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    chat_id: Mapped[int] = mapped_column(
        ForeignKey("private_chats.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    last_read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    # Set by this participant against the other one.
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    chat: Mapped[PrivateChat] = relationship(back_populates="participants")
    user: Mapped[User] = relationship()


class ChatGroup(Base):
    """Multi-party conversation with role based membership."""

    __tablename__ = "chat_groups"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(512))
    creator_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    send_messages: Mapped[GroupPermission] = mapped_column(
        _enum(GroupPermission, "group_permission"),
        default=GroupPermission.ALL_MEMBERS,
        nullable=False,
    )
    add_members: Mapped[GroupPermission] = mapped_column(
        _enum(GroupPermission, "group_permission"),
        default=GroupPermission.ADMINS_ONLY,
        nullable=False,
    )
    remove_members: Mapped[GroupPermission] = mapped_column(
        _enum(GroupPermission, "group_permission"),
        default=GroupPermission.ADMINS_ONLY,
        nullable=False,
    )
    is_discoverable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_virtual: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_message_text: Mapped[str | None] = mapped_column(Text)
    last_message_sender_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL")
    )
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    creator: Mapped[User | None] = relationship(foreign_keys=[creator_id])
    members: Mapped[list["GroupMember"]] = relationship(
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="[GroupMember.joined_at, GroupMember.id]",
    )

    def member_for(self, user_id: int) -> "GroupMember | None":
        return next((member for member in self.members if member.user_id == user_id), None)

    @property
    def member_ids(self) -> list[int]:
        return [member.user_id for member in self.members]

    @property
    def admins(self) -> list["GroupMember"]:
        return [member for member in self.members if member.role == GroupRole.ADMIN]


class GroupMember(Base):
    """Membership of a user in a group chat."""

    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    group_id: Mapped[int] = mapped_column(
        ForeignKey("chat_groups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[GroupRole] = mapped_column(
        _enum(GroupRole, "group_role"), default=GroupRole.MEMBER, nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    group: Mapped[ChatGroup] = relationship(back_populates="members")
    user: Mapped[User] = relationship()


class Message(Base):
    """Chat message; content is immutable once stored."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_private_pair", "sender_id", "recipient_id", "created_at"),
        Index("ix_chat_messages_group_created", "group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    chat_type: Mapped[ChatType] = mapped_column(_enum(ChatType, "chat_type"), nullable=False)
    private_chat_id: Mapped[int | None] = mapped_column(
        ForeignKey("private_chats.id", ondelete="SET NULL")
    )
    recipient_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    group_id: Mapped[int | None] = mapped_column(ForeignKey("chat_groups.id", ondelete="CASCADE"))
    text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    sender: Mapped[User] = relationship(foreign_keys=[sender_id])
    attachments: Mapped[list["MessageAttachment"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageAttachment.position",
    )
    participants: Mapped[list["MessageParticipant"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )
    reads: Mapped[list["MessageRead"]] = relationship(
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageRead.id",
    )

    @property
    def chat_id(self) -> int | None:
        return self.private_chat_id if self.chat_type == ChatType.PRIVATE else self.group_id


class MessageParticipant(Base):
    """Denormalised participant set of a message."""

    __tablename__ = "message_participants"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_participant"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    message: Mapped[Message] = relationship(back_populates="participants")


class MessageAttachment(Base):
    """Attachment reference; the URL is stored exactly as received."""

    __tablename__ = "message_attachments"

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    size: Mapped[int | None] = mapped_column(Integer)

    message: Mapped[Message] = relationship(back_populates="attachments")


class MessageRead(Base):
    """Read receipt; at most one per (message, reader)."""

    __tablename__ = "message_reads"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_read"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    message: Mapped[Message] = relationship(back_populates="reads")


class ChatNotification(Base):
    """Fan-out record of an event a recipient should see."""

    __tablename__ = "chat_notifications"
    __table_args__ = (
        Index("ix_chat_notifications_recipient_created", "recipient_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    recipient_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "chat_notification_type"), nullable=False
    )
    sender_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    message_id: Mapped[int | None] = mapped_column(
        ForeignKey("chat_messages.id", ondelete="SET NULL")
    )
    chat_id: Mapped[int | None] = mapped_column(Integer)
    chat_kind: Mapped[ChatType | None] = mapped_column(_enum(ChatType, "chat_type"))
    chat_name: Mapped[str | None] = mapped_column(String(128))
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    content_preview: Mapped[str | None] = mapped_column(String(255))
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actioned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    sender: Mapped[User | None] = relationship(foreign_keys=[sender_id])


class UserPresence(Base):
    """Persistent presence record, one per user."""

    __tablename__ = "user_presence"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[PresenceStatus] = mapped_column(
        _enum(PresenceStatus, "presence_status"),
        default=PresenceStatus.OFFLINE,
        nullable=False,
    )
    last_active_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    connection_id: Mapped[str | None] = mapped_column(String(64))
    device_type: Mapped[str | None] = mapped_column(String(64))
    device_os: Mapped[str | None] = mapped_column(String(64))
    device_browser: Mapped[str | None] = mapped_column(String(64))
    app_version: Mapped[str | None] = mapped_column(String(32))
    show_online_status: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    show_last_seen: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    typing_chat_id: Mapped[int | None] = mapped_column(Integer)
    typing_chat_kind: Mapped[ChatType | None] = mapped_column(_enum(ChatType, "chat_type"))

    user: Mapped[User] = relationship(back_populates="presence")
