from abc import ABC, abstractmethod
from typing import Optional

from .entity import DeliveryCode


class DeliveryCodeRepository(ABC):

    @abstractmethod
    async def get_active_for_booking(self, booking_id: int) -> Optional[DeliveryCode]:
        pass

    @abstractmethod
    async def try_insert(self, code: DeliveryCode) -> Optional[DeliveryCode]:
        """Insert against the unique code constraint; None when the code is already taken"""
        pass

    @abstractmethod
    async def save(self, code: DeliveryCode) -> DeliveryCode:
        pass
