"""Notification outbox exports."""
from .entity import OutboxMessage, OutboxStatus, MAX_DELIVERY_ATTEMPTS
from .repository import OutboxRepository

__all__ = ["OutboxMessage", "OutboxStatus", "MAX_DELIVERY_ATTEMPTS", "OutboxRepository"]
