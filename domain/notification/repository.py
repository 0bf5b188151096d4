from abc import ABC, abstractmethod
from typing import List

from .entity import OutboxMessage


class OutboxRepository(ABC):

    @abstractmethod
    async def add(self, message: OutboxMessage) -> OutboxMessage:
        pass

    @abstractmethod
    async def list_pending(self, limit: int = 100) -> List[OutboxMessage]:
        pass

    @abstractmethod
    async def save(self, message: OutboxMessage) -> OutboxMessage:
        pass

    @abstractmethod
    async def count_pending(self) -> int:
        pass
