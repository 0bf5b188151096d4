"""Event log domain exports."""
from .entity import EventLogEntry, EventType
from .repository import EventLogRepository

__all__ = ["EventLogEntry", "EventType", "EventLogRepository"]
