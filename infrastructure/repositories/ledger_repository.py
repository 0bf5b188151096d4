"""
Ledger repositories - SQLAlchemy implementation
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import ConflictException, NotFoundException
from domain.ledger.entity import (
    EscrowAccount,
    EscrowStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from domain.ledger.repository import EscrowRepository, TransactionRepository
from infrastructure.models.ledger import EscrowAccountModel, PaymentTransactionModel
from shared.clock import as_utc

logger = get_logger(__name__)


class SQLAlchemyTransactionRepository(TransactionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            authorization_id=model.authorization_id,
            booking_id=model.booking_id,
            user_id=model.user_id,
            type=TransactionType(model.type),
            status=TransactionStatus(model.status),
            amount_cents=model.amount_cents,
            currency=model.currency,
            platform_fee_cents=model.platform_fee_cents,
            gateway_fee_cents=model.gateway_fee_cents,
            net_amount_cents=model.net_amount_cents,
            gateway_reference=model.gateway_reference,
            description=model.description,
            created_at=as_utc(model.created_at),
            processed_at=as_utc(model.processed_at),
        )

    async def create(self, transaction: Transaction) -> Transaction:
        db_transaction = PaymentTransactionModel(
            authorization_id=transaction.authorization_id,
            booking_id=transaction.booking_id,
            user_id=transaction.user_id,
            type=transaction.type.value,
            status=transaction.status.value,
            amount_cents=transaction.amount_cents,
            platform_fee_cents=transaction.platform_fee_cents,
            gateway_fee_cents=transaction.gateway_fee_cents,
            net_amount_cents=transaction.net_amount_cents,
            currency=transaction.currency,
            gateway_reference=transaction.gateway_reference,
            description=transaction.description,
            created_at=transaction.created_at,
            processed_at=transaction.processed_at,
        )
        self.session.add(db_transaction)
        await self.session.flush()
        await self.session.refresh(db_transaction)
        logger.info(
            "transaction_recorded",
            transaction_id=db_transaction.id,
            authorization_id=db_transaction.authorization_id,
            type=db_transaction.type,
            amount_cents=db_transaction.amount_cents,
        )
        return self._to_entity(db_transaction)

    async def update(self, transaction: Transaction) -> Transaction:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(PaymentTransactionModel.id == transaction.id)
        )
        db_transaction = result.scalar_one_or_none()
        if db_transaction is None:
            raise NotFoundException("payment_transaction", transaction.id)
        db_transaction.status = transaction.status.value
        db_transaction.gateway_reference = transaction.gateway_reference
        db_transaction.description = transaction.description
        db_transaction.processed_at = transaction.processed_at
        await self.session.flush()
        return self._to_entity(db_transaction)

    async def get_for_authorization(self, authorization_id: int,
                                    type: Optional[TransactionType] = None) -> Optional[Transaction]:
        query = select(PaymentTransactionModel).where(PaymentTransactionModel.authorization_id == authorization_id)
        if type is not None:
            query = query.where(PaymentTransactionModel.type == TransactionType(type).value)
        result = await self.session.execute(query.order_by(PaymentTransactionModel.id.desc()).limit(1))
        db_transaction = result.scalar_one_or_none()
        return self._to_entity(db_transaction) if db_transaction else None

    async def list_for_booking(self, booking_id: int) -> List[Transaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.booking_id == booking_id)
            .order_by(PaymentTransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class SQLAlchemyEscrowRepository(EscrowRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: EscrowAccountModel) -> EscrowAccount:
        return EscrowAccount(
            id=model.id,
            booking_id=model.booking_id,
            authorization_id=model.authorization_id,
            amount_held_cents=model.amount_held_cents,
            amount_released_cents=model.amount_released_cents,
            amount_refunded_cents=model.amount_refunded_cents,
            currency=model.currency,
            status=EscrowStatus(model.status),
            held_at=as_utc(model.held_at),
            released_at=as_utc(model.released_at),
            refunded_at=as_utc(model.refunded_at),
            release_notes=model.release_notes,
        )

    async def create(self, escrow: EscrowAccount) -> EscrowAccount:
        db_escrow = EscrowAccountModel(
            booking_id=escrow.booking_id,
            authorization_id=escrow.authorization_id,
            amount_held_cents=escrow.amount_held_cents,
            amount_released_cents=escrow.amount_released_cents,
            amount_refunded_cents=escrow.amount_refunded_cents,
            currency=escrow.currency,
            status=escrow.status.value,
            held_at=escrow.held_at,
        )
        self.session.add(db_escrow)
        try:
            await self.session.flush()
        except IntegrityError:
            raise ConflictException("authorization already has an escrow account",
                                    resource="escrow_account", resource_id=escrow.authorization_id)
        await self.session.refresh(db_escrow)
        return self._to_entity(db_escrow)

    async def get_for_authorization(self, authorization_id: int) -> Optional[EscrowAccount]:
        result = await self.session.execute(
            select(EscrowAccountModel).where(EscrowAccountModel.authorization_id == authorization_id)
        )
        db_escrow = result.scalar_one_or_none()
        return self._to_entity(db_escrow) if db_escrow else None

    async def list_for_booking(self, booking_id: int) -> List[EscrowAccount]:
        result = await self.session.execute(
            select(EscrowAccountModel)
            .where(EscrowAccountModel.booking_id == booking_id)
            .order_by(EscrowAccountModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, escrow: EscrowAccount) -> EscrowAccount:
        result = await self.session.execute(select(EscrowAccountModel).where(EscrowAccountModel.id == escrow.id))
        db_escrow = result.scalar_one_or_none()
        if db_escrow is None:
            raise NotFoundException("escrow_account", escrow.id)
        db_escrow.amount_released_cents = escrow.amount_released_cents
        db_escrow.amount_refunded_cents = escrow.amount_refunded_cents
        db_escrow.status = escrow.status.value
        db_escrow.held_at = escrow.held_at
        db_escrow.released_at = escrow.released_at
        db_escrow.refunded_at = escrow.refunded_at
        db_escrow.release_notes = escrow.release_notes
        await self.session.flush()
        logger.info(
            "escrow_updated",
            escrow_id=db_escrow.id,
            booking_id=db_escrow.booking_id,
            status=db_escrow.status,
            released_cents=db_escrow.amount_released_cents,
            refunded_cents=db_escrow.amount_refunded_cents,
        )
        return self._to_entity(db_escrow)
