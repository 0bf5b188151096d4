"""
Event log repository: insert and read only.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import EventLogEntry, EventType


class EventLogRepository(ABC):

    @abstractmethod
    async def append(self, entry: EventLogEntry) -> EventLogEntry:
        pass

    @abstractmethod
    async def timeline(self, authorization_id: int) -> List[EventLogEntry]:
        """All entries for an authorization, oldest first"""
        pass

    @abstractmethod
    async def count_requiring_attention(self, since: Optional[datetime] = None) -> int:
        pass

    @abstractmethod
    async def list_requiring_attention(self, limit: int = 50) -> List[EventLogEntry]:
        pass

    @abstractmethod
    async def count_by_type(self, event_type: EventType, since: Optional[datetime] = None) -> int:
        pass
