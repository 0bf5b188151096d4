"""
Ledger repository interfaces.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Transaction, TransactionType, EscrowAccount


class TransactionRepository(ABC):

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def get_for_authorization(self, authorization_id: int,
                                    type: Optional[TransactionType] = None) -> Optional[Transaction]:
        """Most recent transaction of the given type for an authorization"""
        pass

    @abstractmethod
    async def list_for_booking(self, booking_id: int) -> List[Transaction]:
        pass


class EscrowRepository(ABC):

    @abstractmethod
    async def create(self, escrow: EscrowAccount) -> EscrowAccount:
        pass

    @abstractmethod
    async def get_for_authorization(self, authorization_id: int) -> Optional[EscrowAccount]:
        pass

    @abstractmethod
    async def list_for_booking(self, booking_id: int) -> List[EscrowAccount]:
        pass

    @abstractmethod
    async def update(self, escrow: EscrowAccount) -> EscrowAccount:
        pass
