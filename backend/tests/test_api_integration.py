"""Integration tests exercising API endpoints via FastAPI's TestClient."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from app.models import ChatNotification


def register_user(
    client: TestClient,
    login: str,
    password: str,
    display_name: str = "Test",
) -> dict[str, Any]:
    response = client.post(
        "/api/auth/register",
        json={"login": login, "password": password, "display_name": display_name},
    )
    assert response.status_code == 201, response.text
    return response.json()


def login_user(client: TestClient, login: str, password: str) -> str:
    response = client.post(
        "/api/auth/login",
        json={"login": login, "password": password},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    return body["access_token"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _signup(client: TestClient, login: str, display_name: str) -> tuple[int, dict[str, str]]:
    user = register_user(client, login, f"{login}-password", display_name)
    return user["id"], auth_headers(login_user(client, login, f"{login}-password"))


def _open_chat(client: TestClient, headers: dict[str, str], recipient_id: int) -> dict[str, Any]:
    response = client.post("/api/chat/private", json={"recipientId": recipient_id}, headers=headers)
    assert response.status_code in (200, 201), response.text
    return response.json()["data"]


def _send(client: TestClient, headers: dict[str, str], chat_id: int, text: str, chat_type: str = "private"):
    return client.post(
        "/api/chat/messages/http-fallback",
        json={"chatId": chat_id, "chatType": chat_type, "text": text},
        headers=headers,
    )


def test_register_and_login_flow(client: TestClient):
    """End-to-end flow for registering and logging in a user."""

    payload = {"login": "alice", "password": "wonderland", "display_name": "Alice"}
    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert data["login"] == "alice"
    assert data["display_name"] == "Alice"

    login_response = client.post(
        "/api/auth/login", json={"login": "alice", "password": "wonderland"}
    )
    assert login_response.status_code == 200
    token_data = login_response.json()
    assert token_data["token_type"] == "bearer"
    assert isinstance(token_data["access_token"], str)

    profile = client.get("/api/profile/me", headers=auth_headers(token_data["access_token"]))
    assert profile.status_code == 200
    assert profile.json()["id"] == data["id"]


def test_duplicate_login_and_bad_password_use_error_envelope(client: TestClient):
    register_user(client, "alice", "wonderland", "Alice")

    duplicate = client.post(
        "/api/auth/register",
        json={"login": "alice", "password": "wonderland", "display_name": "Other"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json() == {"success": False, "message": "Login is already taken"}

    wrong = client.post("/api/auth/login", json={"login": "alice", "password": "not-the-one"})
    assert wrong.status_code == 401
    assert wrong.json()["success"] is False


def test_private_chat_is_created_once(client: TestClient):
    alice_id, alice = _signup(client, "alice", "Alice")
    bob_id, bob = _signup(client, "bob", "Bob")

    first = client.post("/api/chat/private", json={"recipientId": bob_id}, headers=alice)
    assert first.status_code == 201
    chat = first.json()["data"]
    low, high = sorted((alice_id, bob_id))
    assert chat["roomId"] == f"private:{low}-{high}"
    assert {participant["id"] for participant in chat["participants"]} == {alice_id, bob_id}

    second = client.post("/api/chat/private", json={"recipientId": alice_id}, headers=bob)
    assert second.status_code == 200
    assert second.json()["data"]["id"] == chat["id"]

    listed = client.get("/api/chat/private", headers=alice).json()["data"]
    assert [item["id"] for item in listed] == [chat["id"]]


def test_http_fallback_send_and_history_paging(client: TestClient, session_factory):
    alice_id, alice = _signup(client, "alice", "Alice")
    bob_id, bob = _signup(client, "bob", "Bob")
    chat = _open_chat(client, alice, bob_id)

    response = _send(client, alice, chat["id"], "first")
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Message sent successfully"
    message = body["data"]
    assert message["chatType"] == "private"
    assert message["chatId"] == chat["id"]
    assert message["recipientId"] == bob_id
    assert message["sender"]["displayName"] == "Alice"
    assert [receipt["userId"] for receipt in message["readBy"]] == [alice_id]

    for text in ("second", "third"):
        assert _send(client, alice, chat["id"], text).status_code == 201

    latest = client.get(
        f"/api/chat/messages/{chat['id']}",
        params={"chatType": "private", "limit": 2},
        headers=bob,
    ).json()["data"]
    assert [item["text"] for item in latest["items"]] == ["second", "third"]
    assert latest["total"] == 3
    assert latest["hasMore"] is True

    older = client.get(
        f"/api/chat/messages/{chat['id']}",
        params={"chatType": "private", "limit": 2, "page": 2},
        headers=bob,
    ).json()["data"]
    assert [item["text"] for item in older["items"]] == ["first"]
    assert older["hasMore"] is False

    with session_factory() as session:
        stored = session.query(ChatNotification).filter_by(recipient_id=bob_id).count()
    assert stored == 3

    overview = client.get("/api/chat/all", headers=bob).json()["data"]
    assert overview["items"][0]["lastMessage"]["text"] == "third"


def test_unread_counts_and_notifications(client: TestClient):
    _, alice = _signup(client, "alice", "Alice")
    bob_id, bob = _signup(client, "bob", "Bob")
    chat = _open_chat(client, alice, bob_id)
    _send(client, alice, chat["id"], "are you there?")
    _send(client, alice, chat["id"], "hello?")

    counts = client.get("/api/chat/unread", headers=bob).json()["data"]
    assert counts == {"unreadMessages": 2, "unreadNotifications": 2, "total": 4}

    listing = client.get("/api/chat/notifications", params={"unreadOnly": True}, headers=bob).json()["data"]
    assert listing["total"] == 2
    first = listing["items"][0]
    assert first["type"] == "new_message"
    assert first["content"]["text"] == "Alice sent you a message"
    assert first["chat"]["kind"] == "private"

    read = client.put(f"/api/chat/notifications/{first['id']}/read", headers=bob)
    assert read.status_code == 200
    assert read.json()["data"]["read"] is True

    marked = client.put(
        "/api/chat/messages/read",
        json={"chatId": chat["id"], "chatType": "private"},
        headers=bob,
    )
    assert marked.json()["data"] == {"count": 2}

    counts = client.get("/api/chat/unread", headers=bob).json()["data"]
    assert counts == {"unreadMessages": 0, "unreadNotifications": 0, "total": 0}

    cleared = client.delete("/api/chat/notifications", headers=bob)
    assert cleared.json()["data"] == {"count": 2}
    assert client.get("/api/chat/notifications", headers=bob).json()["data"]["total"] == 0


def test_group_lifecycle_over_http(client: TestClient):
    alice_id, alice = _signup(client, "alice", "Alice")
    bob_id, bob = _signup(client, "bob", "Bob")
    carol_id, carol = _signup(client, "carol", "Carol")

    created = client.post("/api/chat/group", json={"name": "Climbers", "members": [bob_id]}, headers=alice)
    assert created.status_code == 201, created.text
    group = created.json()["data"]
    assert group["roomId"] == f"group:{group['id']}"
    roles = {member["user"]["id"]: member["role"] for member in group["members"]}
    assert roles == {alice_id: "admin", bob_id: "member"}

    denied = client.post(f"/api/chat/group/{group['id']}/members", json={"members": [carol_id]}, headers=bob)
    assert denied.status_code == 403
    assert denied.json() == {"success": False, "message": "Only group admins can add members"}

    added = client.post(f"/api/chat/group/{group['id']}/members", json={"members": [carol_id]}, headers=alice)
    assert added.status_code == 200
    assert added.json()["message"] == "1 member(s) added successfully"

    sent = _send(client, carol, group["id"], "hi all", chat_type="group")
    assert sent.status_code == 201
    assert sent.json()["data"]["groupId"] == group["id"]

    left = client.post(f"/api/chat/group/{group['id']}/leave", headers=alice)
    assert left.json() == {"success": True, "message": "You have left the group", "data": None}
    promoted = client.get(f"/api/chat/group/{group['id']}", headers=bob).json()["data"]
    assert {member["user"]["id"]: member["role"] for member in promoted["members"]} == {
        bob_id: "admin",
        carol_id: "member",
    }

    assert client.get(f"/api/chat/group/{group['id']}", headers=alice).status_code == 403

    deleted = client.delete(f"/api/chat/group/{group['id']}", headers=bob)
    assert deleted.status_code == 200
    assert client.get("/api/chat/group", headers=carol).json()["data"]["items"] == []


def test_error_envelopes(client: TestClient):
    _, alice = _signup(client, "alice", "Alice")

    missing = client.get("/api/chat/private/999", headers=alice)
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "message": "Chat not found"}

    anonymous = client.get("/api/chat/all")
    assert anonymous.status_code == 401
    assert anonymous.json() == {"success": False, "message": "Not authenticated"}

    invalid = client.post("/api/chat/messages", json={"chatId": 1, "text": "hi"}, headers=alice)
    assert invalid.status_code == 422
    assert invalid.json()["success"] is False
    assert "chatType" in invalid.json()["message"]

    empty = client.get("/api/chat/search", params={"query": "  "}, headers=alice)
    assert empty.status_code == 400
    assert empty.json()["message"] == "Search query is required"


def test_block_toggle_stops_incoming_messages(client: TestClient):
    _, alice = _signup(client, "alice", "Alice")
    bob_id, bob = _signup(client, "bob", "Bob")
    chat = _open_chat(client, alice, bob_id)

    blocked = client.put(f"/api/chat/private/{chat['id']}/block", headers=bob)
    assert blocked.json()["message"] == "User blocked"

    refused = _send(client, alice, chat["id"], "let me in")
    assert refused.status_code == 403
    assert refused.json()["message"] == "You cannot send messages to this user"

    unblocked = client.put(f"/api/chat/private/{chat['id']}/block", headers=bob)
    assert unblocked.json()["message"] == "User unblocked"
    assert _send(client, alice, chat["id"], "thanks").status_code == 201


def test_deleted_private_chat_can_be_reopened(client: TestClient):
    _, alice = _signup(client, "alice", "Alice")
    bob_id, _ = _signup(client, "bob", "Bob")
    chat = _open_chat(client, alice, bob_id)
    _send(client, alice, chat["id"], "before")

    response = client.delete(f"/api/chat/private/{chat['id']}", headers=alice)
    assert response.json()["message"] == "Chat deleted successfully"

    reopened = client.post("/api/chat/private", json={"recipientId": bob_id}, headers=alice)
    assert reopened.status_code == 201
    assert reopened.json()["data"]["id"] != chat["id"]


def test_online_presence_and_push_token(client: TestClient):
    _, alice = _signup(client, "alice", "Alice")

    online = client.get("/api/chat/presence/online", headers=alice)
    assert online.status_code == 200
    assert online.json()["data"] == []

    updated = client.put("/api/profile/push-token", json={"token": "ExponentPushToken[xyz]"}, headers=alice)
    assert updated.status_code == 200
    cleared = client.put("/api/profile/push-token", json={"token": None}, headers=alice)
    assert cleared.status_code == 200
