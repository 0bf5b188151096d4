"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable
import inspect

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.authorization_repository import SQLAlchemyAuthorizationRepository
from infrastructure.repositories.cancellation_repository import (
    SQLAlchemyCancellationAttemptRepository,
    SQLAlchemyReliabilityRepository,
)
from infrastructure.repositories.configuration_repository import SQLAlchemyConfigurationRepository
from infrastructure.repositories.event_log_repository import SQLAlchemyEventLogRepository
from infrastructure.repositories.job_repository import SQLAlchemyScheduledJobRepository
from infrastructure.repositories.ledger_repository import (
    SQLAlchemyEscrowRepository,
    SQLAlchemyTransactionRepository,
)
from infrastructure.repositories.outbox_repository import (
    SQLAlchemyDeliveryCodeRepository,
    SQLAlchemyOutboxRepository,
)

_REPOSITORIES = {
    "authorizations": SQLAlchemyAuthorizationRepository,
    "jobs": SQLAlchemyScheduledJobRepository,
    "transactions": SQLAlchemyTransactionRepository,
    "escrows": SQLAlchemyEscrowRepository,
    "events": SQLAlchemyEventLogRepository,
    "outbox": SQLAlchemyOutboxRepository,
    "configurations": SQLAlchemyConfigurationRepository,
    "cancellation_attempts": SQLAlchemyCancellationAttemptRepository,
    "reliability": SQLAlchemyReliabilityRepository,
    "delivery_codes": SQLAlchemyDeliveryCodeRepository,
}


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        for name, repository_cls in _REPOSITORIES.items():
            setattr(self, name, repository_cls(self.session))
        # 仅在非只读模式下显式开启事务
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # 事务在 commit/rollback 后通常会结束，这里仅在仍然活动时做安全关闭
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def make_uow_factory(session_factory: Callable[[], AsyncSession] = AsyncSessionLocal):
    """``uow_factory(readonly=...)`` callable handed to the application services."""

    def factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)

    return factory
