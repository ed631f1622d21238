"""Metric definitions for the chat core."""

from __future__ import annotations

from .registry import registry


realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime frames processed by the chat router.",
    label_names=("topic", "direction", "action"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

chat_messages_total = registry.counter(
    "chat_messages_total",
    "Messages persisted, by chat type and the transport that carried them.",
    label_names=("chat_type", "transport"),
)

chat_notifications_total = registry.counter(
    "chat_notifications_total",
    "Chat notifications written to the notification sink.",
    label_names=("type",),
)

push_delivery_failures_total = registry.counter(
    "push_delivery_failures_total",
    "Push gateway deliveries that failed or were rejected.",
    label_names=("reason",),
)
