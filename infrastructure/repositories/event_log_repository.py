"""
Payment event log repository - SQLAlchemy implementation (insert and read only)
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.audit.entity import EventLogEntry, EventType
from domain.audit.repository import EventLogRepository
from infrastructure.models.audit import PaymentEventLogModel
from shared.clock import as_utc, utcnow


class SQLAlchemyEventLogRepository(EventLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentEventLogModel) -> EventLogEntry:
        return EventLogEntry(
            id=model.id,
            event_type=EventType(model.event_type),
            authorization_id=model.authorization_id,
            booking_id=model.booking_id,
            user_id=model.user_id,
            success=model.success,
            error_message=model.error_message,
            requires_attention=model.requires_attention,
            payload=dict(model.payload or {}),
            processing_time_ms=model.processing_time_ms,
            created_at=as_utc(model.created_at),
        )

    async def append(self, entry: EventLogEntry) -> EventLogEntry:
        db_entry = PaymentEventLogModel(
            authorization_id=entry.authorization_id,
            booking_id=entry.booking_id,
            user_id=entry.user_id,
            event_type=entry.event_type.value,
            success=entry.success,
            error_message=entry.error_message,
            requires_attention=entry.requires_attention,
            payload=entry.payload,
            processing_time_ms=entry.processing_time_ms,
            created_at=entry.created_at or utcnow(),
        )
        self.session.add(db_entry)
        await self.session.flush()
        return self._to_entity(db_entry)

    async def timeline(self, authorization_id: int) -> List[EventLogEntry]:
        result = await self.session.execute(
            select(PaymentEventLogModel)
            .where(PaymentEventLogModel.authorization_id == authorization_id)
            .order_by(PaymentEventLogModel.created_at.asc(), PaymentEventLogModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_requiring_attention(self, since: Optional[datetime] = None) -> int:
        query = select(func.count(PaymentEventLogModel.id)).where(PaymentEventLogModel.requires_attention.is_(True))
        if since is not None:
            query = query.where(PaymentEventLogModel.created_at >= since)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_requiring_attention(self, limit: int = 50) -> List[EventLogEntry]:
        result = await self.session.execute(
            select(PaymentEventLogModel)
            .where(PaymentEventLogModel.requires_attention.is_(True))
            .order_by(PaymentEventLogModel.created_at.desc(), PaymentEventLogModel.id.desc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_type(self, event_type: EventType, since: Optional[datetime] = None) -> int:
        query = select(func.count(PaymentEventLogModel.id)).where(
            PaymentEventLogModel.event_type == EventType(event_type).value
        )
        if since is not None:
            query = query.where(PaymentEventLogModel.created_at >= since)
        result = await self.session.execute(query)
        return result.scalar_one()
