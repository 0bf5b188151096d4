from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entity import AttemptType, CancellationAttempt, UserReliability


class CancellationAttemptRepository(ABC):

    @abstractmethod
    async def record(self, attempt: CancellationAttempt) -> CancellationAttempt:
        pass

    @abstractmethod
    async def count_allowed(self, user_id: int, attempt_type: AttemptType, since: datetime) -> int:
        pass

    @abstractmethod
    async def oldest_allowed_since(self, user_id: int, attempt_type: AttemptType,
                                   since: datetime) -> Optional[datetime]:
        """Creation time of the oldest allowed attempt in the window; used to tell when it frees up"""
        pass


class ReliabilityRepository(ABC):

    @abstractmethod
    async def get(self, user_id: int) -> Optional[UserReliability]:
        pass

    @abstractmethod
    async def save(self, reliability: UserReliability) -> UserReliability:
        pass
