"""Unit tests for message send, read receipts and deletion."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.models import ChatGroup, ChatNotification, ChatType, MessageRead, NotificationType, PrivateChat
from app.schemas import GroupCreateRequest, SendMessageRequest
from app.services import chats, groups, messages, notifications


@pytest.fixture()
def alice(make_user):
    return make_user("alice")


@pytest.fixture()
def bob(make_user):
    return make_user("bob")


@pytest.fixture()
def private_chat(db_session, alice, bob):
    chat, _ = chats.find_or_create_private_chat(db_session, alice, bob.id)
    return chat


def _send(db_session, sender, chat_id: int, text: str, chat_type: ChatType = ChatType.PRIVATE):
    command = SendMessageRequest(chat_id=chat_id, chat_type=chat_type, text=text)
    return messages.send_message(db_session, sender, command)


def _receipts(db_session, message_id: int) -> int:
    stmt = select(func.count(MessageRead.id)).where(MessageRead.message_id == message_id)
    return db_session.execute(stmt).scalar_one()


def test_send_private_message_updates_last_message(db_session, alice, bob, private_chat):
    sent = _send(db_session, alice, private_chat.id, "hello bob")

    assert sent.room == f"private:{min(alice.id, bob.id)}-{max(alice.id, bob.id)}"
    assert sent.recipient_ids == [bob.id]
    assert sent.message.recipient_id == bob.id
    assert [read.user_id for read in sent.message.reads] == [alice.id]

    db_session.expire_all()
    chat = db_session.get(PrivateChat, private_chat.id)
    assert chat.last_message_text == "hello bob"
    assert chat.last_message_sender_id == alice.id


def test_empty_message_is_rejected(db_session, alice, private_chat):
    with pytest.raises(ValidationError):
        _send(db_session, alice, private_chat.id, "   ")


def test_attachment_only_message_is_accepted(db_session, alice, private_chat):
    command = SendMessageRequest.model_validate(
        {
            "chatId": private_chat.id,
            "chatType": "private",
            "attachments": [{"type": "image", "url": "https://cdn.example/cat.png", "name": "cat.png"}],
        }
    )

    sent = messages.send_message(db_session, alice, command)

    assert sent.message.text == ""
    assert [item.url for item in sent.message.attachments] == ["https://cdn.example/cat.png"]


def test_message_length_limit(db_session, alice, private_chat):
    with pytest.raises(ValidationError):
        _send(db_session, alice, private_chat.id, "x" * 5001)


def test_outsider_cannot_post_to_private_chat(db_session, make_user, private_chat):
    mallory = make_user("mallory")

    with pytest.raises(AuthorizationError):
        _send(db_session, mallory, private_chat.id, "hi")


def test_block_is_directional(db_session, alice, bob, private_chat):
    assert chats.toggle_block(db_session, private_chat, bob.id) is True

    with pytest.raises(AuthorizationError):
        _send(db_session, alice, private_chat.id, "are you there?")

    sent = _send(db_session, bob, private_chat.id, "I can still talk")
    assert sent.recipient_ids == [alice.id]

    assert chats.toggle_block(db_session, private_chat, bob.id) is False
    _send(db_session, alice, private_chat.id, "welcome back")


def test_group_message_reaches_every_other_member(db_session, alice, bob, make_user):
    carol = make_user("carol")
    group = groups.create_group(
        db_session, alice, GroupCreateRequest(name="Team", members=[bob.id, carol.id])
    )

    sent = _send(db_session, bob, group.id, "standup?", ChatType.GROUP)

    assert sent.room == f"group:{group.id}"
    assert sorted(sent.recipient_ids) == sorted([alice.id, carol.id])
    assert sent.chat_name == "Team"
    db_session.expire_all()
    assert db_session.get(ChatGroup, group.id).last_message_text == "standup?"


def test_admins_only_groups_reject_member_messages(db_session, alice, bob):
    payload = GroupCreateRequest.model_validate(
        {"name": "News", "members": [bob.id], "settings": {"sendMessages": "admins_only"}}
    )
    group = groups.create_group(db_session, alice, payload)

    with pytest.raises(AuthorizationError):
        _send(db_session, bob, group.id, "can I post?", ChatType.GROUP)
    _send(db_session, alice, group.id, "announcement", ChatType.GROUP)


def test_mark_as_read_is_idempotent(db_session, alice, bob, private_chat):
    sent = _send(db_session, alice, private_chat.id, "read me")
    message_id = sent.message.id

    messages.mark_as_read(db_session, message_id, bob)
    messages.mark_as_read(db_session, message_id, bob)

    assert _receipts(db_session, message_id) == 2


def test_mark_as_read_requires_participant(db_session, make_user, alice, private_chat):
    sent = _send(db_session, alice, private_chat.id, "private")
    mallory = make_user("mallory")

    with pytest.raises(AuthorizationError):
        messages.mark_as_read(db_session, sent.message.id, mallory)
    with pytest.raises(NotFoundError):
        messages.mark_as_read(db_session, 424242, alice)


def test_mark_all_as_read_clears_unread_and_chat_notifications(db_session, alice, bob, private_chat):
    for text in ("one", "two", "three"):
        _send(db_session, alice, private_chat.id, text)
    notifications.notify(
        db_session,
        recipient_id=bob.id,
        kind=NotificationType.NEW_MESSAGE,
        text="Alice sent you a message",
        chat_id=private_chat.id,
        chat_kind=ChatType.PRIVATE,
    )
    db_session.commit()
    assert messages.unread_message_count(db_session, bob.id) == 3

    marked = messages.mark_all_as_read(db_session, private_chat.id, ChatType.PRIVATE, bob)

    assert marked == 3
    assert messages.unread_message_count(db_session, bob.id) == 0
    assert messages.mark_all_as_read(db_session, private_chat.id, ChatType.PRIVATE, bob) == 0
    unread = db_session.execute(
        select(func.count(ChatNotification.id)).where(ChatNotification.is_read.is_(False))
    ).scalar_one()
    assert unread == 0
    db_session.expire_all()
    assert db_session.get(PrivateChat, private_chat.id).status_for(bob.id).last_read_at is not None


def test_history_is_oldest_first_and_marks_page_read(db_session, alice, bob, private_chat):
    for index in range(5):
        _send(db_session, alice, private_chat.id, f"message {index}")

    page, total = messages.fetch_chat_history(
        db_session, private_chat.id, ChatType.PRIVATE, bob, offset=0, limit=2
    )

    assert total == 5
    assert [message.text for message in page] == ["message 3", "message 4"]
    assert messages.unread_message_count(db_session, bob.id) == 3


def test_history_survives_chat_recreation(db_session, alice, bob, private_chat):
    _send(db_session, alice, private_chat.id, "before delete")
    chats.delete_private_chat(db_session, private_chat)

    chat, created = chats.find_or_create_private_chat(db_session, bob, alice.id)
    page, total = messages.fetch_chat_history(db_session, chat.id, ChatType.PRIVATE, bob, offset=0, limit=10)

    assert created is True
    assert total == 1
    assert page[0].text == "before delete"


def test_delete_message_recomputes_last_message(db_session, alice, bob, private_chat):
    first = _send(db_session, alice, private_chat.id, "first")
    second = _send(db_session, alice, private_chat.id, "second")
    first_id = first.message.id

    deleted = messages.delete_message(db_session, second.message.id, alice)

    assert deleted.chat_id == private_chat.id
    assert deleted.last_message is not None and deleted.last_message.id == first_id
    db_session.expire_all()
    assert db_session.get(PrivateChat, private_chat.id).last_message_text == "first"

    messages.delete_message(db_session, first_id, alice)
    db_session.expire_all()
    chat = db_session.get(PrivateChat, private_chat.id)
    assert chat.last_message_text is None
    assert chat.last_message_at is None


def test_only_the_sender_can_delete(db_session, alice, bob, private_chat):
    sent = _send(db_session, alice, private_chat.id, "mine")

    with pytest.raises(AuthorizationError):
        messages.delete_message(db_session, sent.message.id, bob)
