"""Notification service client: one POST per outbox event."""
from typing import Any

from application.ports.collaborators import CollaboratorError
from .base import APIError, BaseAPIClient


class NotificationHttpClient(BaseAPIClient):
    """NotificationSink over HTTP. Delivery format is owned by the notification service."""

    service_name = "notification"

    async def publish(self, event: dict[str, Any]) -> None:
        try:
            await self.post("/internal/events/payments", json_data=event)
        except APIError as exc:
            raise CollaboratorError(str(exc), service=self.service_name, status_code=exc.status_code) from exc
