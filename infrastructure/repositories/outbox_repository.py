"""
Notification outbox and delivery code repositories - SQLAlchemy implementation
"""
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import NotFoundException
from domain.delivery.entity import DeliveryCode, DeliveryCodeStatus
from domain.delivery.repository import DeliveryCodeRepository
from domain.notification.entity import OutboxMessage, OutboxStatus
from domain.notification.repository import OutboxRepository
from infrastructure.models.notification import DeliveryCodeModel, NotificationOutboxModel
from shared.clock import as_utc, utcnow

logger = get_logger(__name__)


class SQLAlchemyOutboxRepository(OutboxRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: NotificationOutboxModel) -> OutboxMessage:
        return OutboxMessage(
            id=model.id,
            event_type=model.event_type,
            authorization_id=model.authorization_id,
            booking_id=model.booking_id,
            amount_cents=model.amount_cents,
            actor_id=model.actor_id,
            payload=dict(model.payload or {}),
            status=OutboxStatus(model.status),
            attempts=model.attempts,
            last_error=model.last_error,
            created_at=as_utc(model.created_at),
            sent_at=as_utc(model.sent_at),
        )

    async def add(self, message: OutboxMessage) -> OutboxMessage:
        db_message = NotificationOutboxModel(
            authorization_id=message.authorization_id,
            booking_id=message.booking_id,
            event_type=message.event_type,
            actor_id=message.actor_id,
            amount_cents=message.amount_cents,
            payload=message.payload,
            status=message.status.value,
            attempts=message.attempts,
            created_at=message.created_at or utcnow(),
        )
        self.session.add(db_message)
        await self.session.flush()
        return self._to_entity(db_message)

    async def list_pending(self, limit: int = 100) -> List[OutboxMessage]:
        result = await self.session.execute(
            select(NotificationOutboxModel)
            .where(NotificationOutboxModel.status == OutboxStatus.PENDING.value)
            .order_by(NotificationOutboxModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def save(self, message: OutboxMessage) -> OutboxMessage:
        db_message = await self.session.get(NotificationOutboxModel, message.id)
        if db_message is None:
            raise NotFoundException("notification_outbox", message.id)
        db_message.status = message.status.value
        db_message.attempts = message.attempts
        db_message.last_error = message.last_error
        db_message.sent_at = message.sent_at
        await self.session.flush()
        return self._to_entity(db_message)

    async def count_pending(self) -> int:
        result = await self.session.execute(
            select(func.count(NotificationOutboxModel.id))
            .where(NotificationOutboxModel.status == OutboxStatus.PENDING.value)
        )
        return result.scalar_one()


class SQLAlchemyDeliveryCodeRepository(DeliveryCodeRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: DeliveryCodeModel) -> DeliveryCode:
        return DeliveryCode(
            id=model.id,
            booking_id=model.booking_id,
            code=model.code,
            status=DeliveryCodeStatus(model.status),
            created_at=as_utc(model.created_at),
            used_at=as_utc(model.used_at),
        )

    async def get_active_for_booking(self, booking_id: int) -> Optional[DeliveryCode]:
        result = await self.session.execute(
            select(DeliveryCodeModel)
            .where(
                DeliveryCodeModel.booking_id == booking_id,
                DeliveryCodeModel.status == DeliveryCodeStatus.ACTIVE.value,
            )
            .order_by(DeliveryCodeModel.id.desc())
            .limit(1)
        )
        db_code = result.scalar_one_or_none()
        return self._to_entity(db_code) if db_code else None

    async def try_insert(self, code: DeliveryCode) -> Optional[DeliveryCode]:
        taken = await self.session.execute(select(DeliveryCodeModel.id).where(DeliveryCodeModel.code == code.code))
        if taken.first() is not None:
            return None
        db_code = DeliveryCodeModel(
            booking_id=code.booking_id,
            code=code.code,
            status=code.status.value,
            created_at=code.created_at or utcnow(),
        )
        self.session.add(db_code)
        try:
            await self.session.flush()
        except IntegrityError:
            # Lost a race for the same code; the caller draws again in a fresh unit of work
            await self.session.rollback()
            logger.debug("delivery_code_insert_conflict", booking_id=code.booking_id)
            return None
        return self._to_entity(db_code)

    async def save(self, code: DeliveryCode) -> DeliveryCode:
        db_code = await self.session.get(DeliveryCodeModel, code.id)
        if db_code is None:
            raise NotFoundException("delivery_code", code.id)
        db_code.status = code.status.value
        db_code.used_at = code.used_at
        await self.session.flush()
        return self._to_entity(db_code)
