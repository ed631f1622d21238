"""Push gateway for recipients that are not in the room a message was sent to."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.config import get_settings
from app.models import User
from app.monitoring.metrics import push_delivery_failures_total

logger = logging.getLogger(__name__)

settings = get_settings()


class PushGateway:
    """Posts notifications to an Expo-compatible push endpoint.

    Delivery is best effort: failures are logged and counted but never raised
    to the caller, since the in-app notification row is already stored.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        enabled: bool | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url or settings.push_gateway_url
        self.enabled = settings.push_notifications_enabled if enabled is None else enabled
        self.timeout = timeout or settings.push_timeout_seconds
        self._transport = transport

    def _build_payload(self, token: str, title: str, body: str, data: dict[str, Any] | None) -> dict[str, Any]:
        return {
            "to": token,
            "title": title,
            "body": body,
            "data": data or {},
            "sound": "default",
            "priority": "high",
        }

    async def send(
        self,
        target: User,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Send one push message to *target*; returns whether it was accepted."""

        if not self.enabled:
            return False
        token = target.push_token
        if not token:
            logger.debug("User %s has no push token; skipping push", target.id)
            return False

        payload = self._build_payload(token, title, body, data)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers={"Accept": "application/json", "Content-Type": "application/json"},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            push_delivery_failures_total.labels("status").inc()
            logger.warning(
                "Push gateway rejected message for user %s with status %s",
                target.id,
                exc.response.status_code,
            )
            return False
        except httpx.HTTPError as exc:
            push_delivery_failures_total.labels("transport").inc()
            logger.warning("Push delivery to user %s failed: %s", target.id, exc)
            return False
        return True


push_gateway = PushGateway()
"""Gateway shared by the realtime router and HTTP routes."""


def get_push_gateway() -> PushGateway:
    return push_gateway
