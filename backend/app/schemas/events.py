"""Realtime protocol contracts exchanged over ``/ws/chat``.

Every frame is a JSON object whose ``type`` key names the event; the other
keys carry the payload. Inbound frames are validated against the tagged union
below; outbound frames are built with :func:`build_event`.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from app.schemas.chat import AttachmentPayload, CamelModel

PRIVATE_JOINED = "private:joined"
PRIVATE_MESSAGE = "private:message"
GROUP_JOINED = "group:joined"
GROUP_USER_JOINED = "group:userJoined"
GROUP_MESSAGE = "group:message"
TYPING_UPDATE = "typing:update"
USER_ONLINE = "user:online"
USER_OFFLINE = "user:offline"
USER_STATUS = "user:status"
USERS_ONLINE = "users:online"
NOTIFICATION_MESSAGE = "notification:message"
STATUS_UPDATED = "status:updated"
PRIVACY_UPDATED = "privacy:updated"
ERROR = "error"
PONG = "pong"


class PrivateJoinEvent(CamelModel):
    type: Literal["private:join"]
    recipient_id: int


class PrivateMessageEvent(CamelModel):
    type: Literal["private:message"]
    chat_id: int
    room_id: str | None = None
    recipient_id: int | None = None
    text: str | None = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class GroupJoinEvent(CamelModel):
    type: Literal["group:join"]
    group_id: int


class GroupMessageEvent(CamelModel):
    type: Literal["group:message"]
    group_id: int
    room_id: str | None = None
    text: str | None = None
    attachments: list[AttachmentPayload] = Field(default_factory=list)


class TypingEvent(CamelModel):
    type: Literal["typing:start", "typing:stop"]
    room_id: str


class StatusUpdateEvent(CamelModel):
    type: Literal["status:update"]
    status: str


class PrivacySettings(CamelModel):
    show_online_status: bool | None = None
    show_last_seen: bool | None = None


class PrivacyUpdateEvent(CamelModel):
    type: Literal["privacy:update"]
    settings: PrivacySettings


class PingEvent(CamelModel):
    type: Literal["ping", "pong"]


InboundEvent = Annotated[
    Union[
        PrivateJoinEvent,
        PrivateMessageEvent,
        GroupJoinEvent,
        GroupMessageEvent,
        TypingEvent,
        StatusUpdateEvent,
        PrivacyUpdateEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

inbound_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def build_event(event_type: str, **payload: Any) -> dict[str, Any]:
    """Return an outbound frame for *event_type* with camelCase payload keys."""

    return {"type": event_type, **payload}
