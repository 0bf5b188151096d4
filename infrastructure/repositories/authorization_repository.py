"""
Authorization repository - SQLAlchemy implementation
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core.logging_config import get_logger
from domain.authorization.entity import AuthorizationStatus, CaptureReason, PaymentAuthorization
from domain.authorization.repository import AuthorizationRepository
from domain.common.exceptions import ConflictException
from infrastructure.models.authorization import PaymentAuthorizationModel
from shared.clock import as_utc

logger = get_logger(__name__)

_TERMINAL_VALUES = [
    AuthorizationStatus.CAPTURED.value,
    AuthorizationStatus.CANCELLED.value,
    AuthorizationStatus.EXPIRED.value,
]

# Columns copied one-to-one between the model and the entity on update
_MUTABLE_FIELDS = (
    "gateway_handle", "destination_account", "confirmation_deadline", "expires_at", "auto_capture_at",
    "trip_departure_at", "capture_attempts", "last_error", "cancellation_reason", "confirmed_at",
    "captured_at", "cancelled_at", "expired_at", "updated_at",
)


class SQLAlchemyAuthorizationRepository(AuthorizationRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentAuthorizationModel) -> PaymentAuthorization:
        return PaymentAuthorization(
            id=model.id,
            booking_id=model.booking_id,
            payer_id=model.payer_id,
            payee_id=model.payee_id,
            amount_cents=model.amount_cents,
            currency=model.currency,
            platform_fee_cents=model.platform_fee_cents,
            status=AuthorizationStatus(model.status),
            confirmation_deadline=as_utc(model.confirmation_deadline),
            gateway_handle=model.gateway_handle,
            destination_account=model.destination_account,
            trip_departure_at=as_utc(model.trip_departure_at),
            expires_at=as_utc(model.expires_at),
            auto_capture_at=as_utc(model.auto_capture_at),
            capture_reason=CaptureReason(model.capture_reason) if model.capture_reason else None,
            capture_attempts=model.capture_attempts,
            last_error=model.last_error,
            cancellation_reason=model.cancellation_reason,
            confirmed_at=as_utc(model.confirmed_at),
            captured_at=as_utc(model.captured_at),
            cancelled_at=as_utc(model.cancelled_at),
            expired_at=as_utc(model.expired_at),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
            version=model.version,
            metadata=model.extra_metadata or {},
        )

    def _to_model(self, entity: PaymentAuthorization) -> PaymentAuthorizationModel:
        return PaymentAuthorizationModel(
            booking_id=entity.booking_id,
            payer_id=entity.payer_id,
            payee_id=entity.payee_id,
            gateway_handle=entity.gateway_handle,
            destination_account=entity.destination_account,
            amount_cents=entity.amount_cents,
            currency=entity.currency,
            platform_fee_cents=entity.platform_fee_cents,
            status=entity.status.value,
            confirmation_deadline=entity.confirmation_deadline,
            expires_at=entity.expires_at,
            auto_capture_at=entity.auto_capture_at,
            trip_departure_at=entity.trip_departure_at,
            capture_reason=entity.capture_reason.value if entity.capture_reason else None,
            capture_attempts=entity.capture_attempts,
            last_error=entity.last_error,
            cancellation_reason=entity.cancellation_reason,
            confirmed_at=entity.confirmed_at,
            captured_at=entity.captured_at,
            cancelled_at=entity.cancelled_at,
            expired_at=entity.expired_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at or entity.created_at,
            active_booking_key=entity.active_booking_key,
            version=1,
            extra_metadata=entity.metadata,
        )

    async def create(self, authorization: PaymentAuthorization) -> PaymentAuthorization:
        db_authorization = self._to_model(authorization)
        self.session.add(db_authorization)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            logger.warning("authorization_create_conflict", booking_id=authorization.booking_id)
            raise ConflictException(
                "booking already has an active payment authorization",
                resource="payment_authorization",
                resource_id=authorization.booking_id,
            )
        await self.session.refresh(db_authorization)
        return self._to_entity(db_authorization)

    async def get_by_id(self, authorization_id: int) -> Optional[PaymentAuthorization]:
        result = await self.session.execute(
            select(PaymentAuthorizationModel)
            .where(PaymentAuthorizationModel.id == authorization_id)
            .execution_options(populate_existing=True)
        )
        db_authorization = result.scalar_one_or_none()
        return self._to_entity(db_authorization) if db_authorization else None

    async def get_active_for_booking(self, booking_id: int) -> Optional[PaymentAuthorization]:
        result = await self.session.execute(
            select(PaymentAuthorizationModel).where(PaymentAuthorizationModel.active_booking_key == booking_id)
        )
        db_authorization = result.scalar_one_or_none()
        return self._to_entity(db_authorization) if db_authorization else None

    async def get_latest_for_booking(self, booking_id: int) -> Optional[PaymentAuthorization]:
        result = await self.session.execute(
            select(PaymentAuthorizationModel)
            .where(PaymentAuthorizationModel.booking_id == booking_id)
            .order_by(PaymentAuthorizationModel.id.desc())
            .limit(1)
        )
        db_authorization = result.scalar_one_or_none()
        return self._to_entity(db_authorization) if db_authorization else None

    async def update(self, authorization: PaymentAuthorization) -> PaymentAuthorization:
        """
        Write the aggregate if nobody else did since it was read.

        The mapper's version column turns the flush into
        ``UPDATE ... WHERE id = :id AND version = :read_version``; a stale
        version surfaces as ConflictException.
        """
        result = await self.session.execute(
            select(PaymentAuthorizationModel).where(PaymentAuthorizationModel.id == authorization.id)
        )
        db_authorization = result.scalar_one_or_none()
        if db_authorization is None or db_authorization.version != authorization.version:
            raise ConflictException(
                "authorization was modified concurrently",
                resource="payment_authorization",
                resource_id=authorization.id,
            )

        for name in _MUTABLE_FIELDS:
            setattr(db_authorization, name, getattr(authorization, name))
        db_authorization.status = authorization.status.value
        db_authorization.capture_reason = authorization.capture_reason.value if authorization.capture_reason else None
        db_authorization.active_booking_key = authorization.active_booking_key
        db_authorization.extra_metadata = authorization.metadata
        db_authorization.version = authorization.version + 1

        try:
            await self.session.flush()
        except StaleDataError:
            raise ConflictException(
                "authorization was modified concurrently",
                resource="payment_authorization",
                resource_id=authorization.id,
            )
        except IntegrityError:
            raise ConflictException(
                "booking already has an active payment authorization",
                resource="payment_authorization",
                resource_id=authorization.booking_id,
            )

        logger.debug(
            "authorization_row_updated",
            authorization_id=db_authorization.id,
            status=db_authorization.status,
            version=db_authorization.version,
        )
        return self._to_entity(db_authorization)

    async def list_by_status(
        self,
        status: Optional[AuthorizationStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[PaymentAuthorization]:
        query = select(PaymentAuthorizationModel)
        if status:
            query = query.where(PaymentAuthorizationModel.status == AuthorizationStatus(status).value)
        query = query.order_by(PaymentAuthorizationModel.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_for_reconciliation(
        self,
        statuses: Sequence[AuthorizationStatus],
        updated_before: datetime,
        updated_after: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[PaymentAuthorization]:
        query = select(PaymentAuthorizationModel).where(
            PaymentAuthorizationModel.gateway_handle.is_not(None),
            PaymentAuthorizationModel.status.in_([AuthorizationStatus(s).value for s in statuses]),
            PaymentAuthorizationModel.updated_at < updated_before,
        )
        if updated_after is not None:
            query = query.where(PaymentAuthorizationModel.updated_at >= updated_after)
        query = query.order_by(PaymentAuthorizationModel.updated_at.asc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_payee_pending_setup(self, payee_id: int) -> List[PaymentAuthorization]:
        result = await self.session.execute(
            select(PaymentAuthorizationModel)
            .where(
                PaymentAuthorizationModel.payee_id == payee_id,
                PaymentAuthorizationModel.status == AuthorizationStatus.PENDING_GATEWAY_SETUP.value,
            )
            .order_by(PaymentAuthorizationModel.created_at.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count(self, status: Optional[AuthorizationStatus] = None) -> int:
        query = select(func.count(PaymentAuthorizationModel.id))
        if status:
            query = query.where(PaymentAuthorizationModel.status == AuthorizationStatus(status).value)
        result = await self.session.execute(query)
        return int(result.scalar_one())

    async def count_by_status(self) -> dict[str, int]:
        result = await self.session.execute(
            select(PaymentAuthorizationModel.status, func.count(PaymentAuthorizationModel.id))
            .group_by(PaymentAuthorizationModel.status)
        )
        return {status: count for status, count in result.all()}

    async def captured_volume_cents(self) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PaymentAuthorizationModel.amount_cents), 0))
            .where(PaymentAuthorizationModel.status == AuthorizationStatus.CAPTURED.value)
        )
        return int(result.scalar_one())

    async def average_minutes_to_confirm(self) -> Optional[float]:
        return await self._average_minutes(
            PaymentAuthorizationModel.created_at, PaymentAuthorizationModel.confirmed_at
        )

    async def average_minutes_to_capture(self) -> Optional[float]:
        return await self._average_minutes(
            PaymentAuthorizationModel.confirmed_at, PaymentAuthorizationModel.captured_at
        )

    async def _average_minutes(self, start_column, end_column) -> Optional[float]:
        # Interval arithmetic differs per dialect; average in Python instead
        result = await self.session.execute(
            select(start_column, end_column).where(start_column.is_not(None), end_column.is_not(None))
        )
        spans = [(as_utc(end) - as_utc(start)).total_seconds() / 60 for start, end in result.all()]
        if not spans:
            return None
        return round(sum(spans) / len(spans), 2)
