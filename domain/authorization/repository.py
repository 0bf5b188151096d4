"""
Authorization repository interface.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .entity import PaymentAuthorization, AuthorizationStatus


class AuthorizationRepository(ABC):
    """Persistence contract for the authorization aggregate"""

    @abstractmethod
    async def create(self, authorization: PaymentAuthorization) -> PaymentAuthorization:
        """Insert; raises ConflictException if the booking already has an active authorization"""
        pass

    @abstractmethod
    async def get_by_id(self, authorization_id: int) -> Optional[PaymentAuthorization]:
        pass

    @abstractmethod
    async def get_active_for_booking(self, booking_id: int) -> Optional[PaymentAuthorization]:
        """The single non-terminal authorization of a booking, if any"""
        pass

    @abstractmethod
    async def get_latest_for_booking(self, booking_id: int) -> Optional[PaymentAuthorization]:
        pass

    @abstractmethod
    async def update(self, authorization: PaymentAuthorization) -> PaymentAuthorization:
        """Optimistic write guarded by ``version``; raises ConflictException on a stale version"""
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: Optional[AuthorizationStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[PaymentAuthorization]:
        pass

    @abstractmethod
    async def count(self, status: Optional[AuthorizationStatus] = None) -> int:
        pass

    @abstractmethod
    async def list_for_reconciliation(
        self,
        statuses: Sequence[AuthorizationStatus],
        updated_before: datetime,
        updated_after: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[PaymentAuthorization]:
        """Rows with a gateway handle whose local state may lag the gateway"""
        pass

    @abstractmethod
    async def list_payee_pending_setup(self, payee_id: int) -> List[PaymentAuthorization]:
        pass

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]:
        pass

    @abstractmethod
    async def captured_volume_cents(self) -> int:
        pass

    @abstractmethod
    async def average_minutes_to_confirm(self) -> Optional[float]:
        pass

    @abstractmethod
    async def average_minutes_to_capture(self) -> Optional[float]:
        pass
