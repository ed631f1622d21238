"""create chat tables

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


CHAT_TYPE = sa.Enum("private", "group", name="chat_type")
GROUP_ROLE = sa.Enum("admin", "member", name="group_role")
GROUP_PERMISSION = sa.Enum("all_members", "admins_only", name="group_permission")
PRESENCE_STATUS = sa.Enum("online", "away", "busy", "invisible", "offline", name="presence_status")
NOTIFICATION_TYPE = sa.Enum(
    "new_message",
    "group_invitation",
    "mention",
    "added_to_group",
    "removed_from_group",
    "admin_promotion",
    "admin_demotion",
    "group_updated",
    "group_members_added",
    "group_removed",
    "group_member_left",
    "group_role_changed",
    name="notification_type",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def _last_message_columns() -> list[sa.Column]:
    return [
        sa.Column("last_message_text", sa.Text(), nullable=True),
        sa.Column(
            "last_message_sender_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("login", sa.String(length=64), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("push_token", sa.String(length=255), nullable=True),
        *_timestamps(),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "private_chats",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_a_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_b_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("active_key", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_last_message_columns(),
        *_timestamps(),
        sa.UniqueConstraint("active_key", name="uq_private_chats_active_key"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "private_chat_participants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "chat_id",
            sa.Integer(),
            sa.ForeignKey("private_chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("chat_id", "user_id", name="uq_private_chat_participant"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "chat_groups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("avatar_url", sa.String(length=512), nullable=True),
        sa.Column("creator_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("send_messages", GROUP_PERMISSION, nullable=False, server_default="all_members"),
        sa.Column("add_members", GROUP_PERMISSION, nullable=False, server_default="admins_only"),
        sa.Column("remove_members", GROUP_PERMISSION, nullable=False, server_default="admins_only"),
        sa.Column("is_discoverable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_virtual", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_last_message_columns(),
        *_timestamps(),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "group_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("chat_groups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", GROUP_ROLE, nullable=False, server_default="member"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chat_type", CHAT_TYPE, nullable=False),
        sa.Column(
            "private_chat_id",
            sa.Integer(),
            sa.ForeignKey("private_chats.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("chat_groups.id", ondelete="CASCADE"), nullable=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_chat_messages_private_pair",
        "chat_messages",
        ["sender_id", "recipient_id", "created_at"],
    )
    op.create_index("ix_chat_messages_group_created", "chat_messages", ["group_id", "created_at"])

    op.create_table(
        "message_participants",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "message_id",
            sa.Integer(),
            sa.ForeignKey("chat_messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_participant"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_message_participants_user_id", "message_participants", ["user_id"])

    op.create_table(
        "message_attachments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "message_id",
            sa.Integer(),
            sa.ForeignKey("chat_messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("size", sa.Integer(), nullable=True),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "message_reads",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "message_id",
            sa.Integer(),
            sa.ForeignKey("chat_messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_read"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "chat_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", NOTIFICATION_TYPE, nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "message_id",
            sa.Integer(),
            sa.ForeignKey("chat_messages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("chat_id", sa.Integer(), nullable=True),
        sa.Column("chat_kind", CHAT_TYPE, nullable=True),
        sa.Column("chat_name", sa.String(length=128), nullable=True),
        sa.Column("content_text", sa.Text(), nullable=False),
        sa.Column("content_preview", sa.String(length=255), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actioned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_chat_notifications_recipient_created",
        "chat_notifications",
        ["recipient_id", "created_at"],
    )

    op.create_table(
        "user_presence",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", PRESENCE_STATUS, nullable=False, server_default="offline"),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("connection_id", sa.String(length=64), nullable=True),
        sa.Column("device_type", sa.String(length=64), nullable=True),
        sa.Column("device_os", sa.String(length=64), nullable=True),
        sa.Column("device_browser", sa.String(length=64), nullable=True),
        sa.Column("app_version", sa.String(length=32), nullable=True),
        sa.Column("show_online_status", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("show_last_seen", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("typing_chat_id", sa.Integer(), nullable=True),
        sa.Column("typing_chat_kind", CHAT_TYPE, nullable=True),
        sa.UniqueConstraint("user_id", name="uq_user_presence_user"),
        mysql_charset="utf8mb4",
    )


def downgrade() -> None:
    op.drop_table("user_presence")
    op.drop_index("ix_chat_notifications_recipient_created", table_name="chat_notifications")
    op.drop_table("chat_notifications")
    op.drop_table("message_reads")
    op.drop_table("message_attachments")
    op.drop_index("ix_message_participants_user_id", table_name="message_participants")
    op.drop_table("message_participants")
    op.drop_index("ix_chat_messages_group_created", table_name="chat_messages")
    op.drop_index("ix_chat_messages_private_pair", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_group_members_group_id", table_name="group_members")
    op.drop_table("group_members")
    op.drop_table("chat_groups")
    op.drop_table("private_chat_participants")
    op.drop_table("private_chats")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (NOTIFICATION_TYPE, PRESENCE_STATUS, GROUP_PERMISSION, GROUP_ROLE, CHAT_TYPE):
        enum_type.drop(bind, checkfirst=True)
