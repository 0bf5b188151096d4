"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.audit.repository import EventLogRepository
from domain.authorization.repository import AuthorizationRepository
from domain.cancellation.repository import CancellationAttemptRepository, ReliabilityRepository
from domain.configuration.repository import ConfigurationRepository
from domain.delivery.repository import DeliveryCodeRepository
from domain.ledger.repository import EscrowRepository, TransactionRepository
from domain.notification.repository import OutboxRepository
from domain.scheduling.repository import ScheduledJobRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    authorizations: AuthorizationRepository
    jobs: ScheduledJobRepository
    transactions: TransactionRepository
    escrows: EscrowRepository
    events: EventLogRepository
    outbox: OutboxRepository
    configurations: ConfigurationRepository
    cancellation_attempts: CancellationAttemptRepository
    reliability: ReliabilityRepository
    delivery_codes: DeliveryCodeRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
