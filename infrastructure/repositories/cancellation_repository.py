"""
Cancellation attempt and reliability repositories - SQLAlchemy implementation
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.cancellation.entity import AttemptType, CancellationAttempt, UserReliability
from domain.cancellation.repository import CancellationAttemptRepository, ReliabilityRepository
from infrastructure.models.cancellation import CancellationAttemptModel, UserReliabilityModel
from shared.clock import as_utc, utcnow


class SQLAlchemyCancellationAttemptRepository(CancellationAttemptRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, attempt: CancellationAttempt) -> CancellationAttempt:
        db_attempt = CancellationAttemptModel(
            user_id=attempt.user_id,
            booking_id=attempt.booking_id,
            trip_id=attempt.trip_id,
            attempt_type=attempt.attempt_type.value,
            bucket=attempt.bucket,
            allowed=attempt.allowed,
            denial_reason=attempt.denial_reason,
            created_at=attempt.created_at or utcnow(),
        )
        self.session.add(db_attempt)
        await self.session.flush()
        attempt.id = db_attempt.id
        attempt.created_at = as_utc(db_attempt.created_at)
        return attempt

    def _window(self, user_id: int, attempt_type: AttemptType, since: datetime):
        return (
            CancellationAttemptModel.user_id == user_id,
            CancellationAttemptModel.attempt_type == AttemptType(attempt_type).value,
            CancellationAttemptModel.allowed.is_(True),
            CancellationAttemptModel.created_at >= since,
        )

    async def count_allowed(self, user_id: int, attempt_type: AttemptType, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(CancellationAttemptModel.id)).where(*self._window(user_id, attempt_type, since))
        )
        return result.scalar_one()

    async def oldest_allowed_since(self, user_id: int, attempt_type: AttemptType,
                                   since: datetime) -> Optional[datetime]:
        result = await self.session.execute(
            select(func.min(CancellationAttemptModel.created_at)).where(*self._window(user_id, attempt_type, since))
        )
        return as_utc(result.scalar_one_or_none())


class SQLAlchemyReliabilityRepository(ReliabilityRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[UserReliability]:
        db_row = await self.session.get(UserReliabilityModel, user_id)
        if db_row is None:
            return None
        return UserReliability(
            user_id=db_row.user_id,
            score=db_row.score,
            cancellation_count=db_row.cancellation_count,
            last_cancellation_at=as_utc(db_row.last_cancellation_at),
            updated_at=as_utc(db_row.updated_at),
        )

    async def save(self, reliability: UserReliability) -> UserReliability:
        db_row = await self.session.get(UserReliabilityModel, reliability.user_id)
        if db_row is None:
            db_row = UserReliabilityModel(user_id=reliability.user_id)
            self.session.add(db_row)
        db_row.score = reliability.score
        db_row.cancellation_count = reliability.cancellation_count
        db_row.last_cancellation_at = reliability.last_cancellation_at
        db_row.updated_at = reliability.updated_at or utcnow()
        await self.session.flush()
        return reliability
