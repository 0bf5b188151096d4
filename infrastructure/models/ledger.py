"""
Ledger tables: transactions and escrow accounts.
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, Index
from datetime import datetime, timezone

from .base import Base


class PaymentTransactionModel(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    authorization_id = Column(Integer, nullable=False, index=True, comment="Owning authorization")
    booking_id = Column(Integer, nullable=False, index=True, comment="Booking")
    user_id = Column(Integer, nullable=True, index=True, comment="Payer or beneficiary")

    type = Column(String(16), nullable=False, comment="authorization/capture/refund/compensation")
    status = Column(String(16), nullable=False, index=True, comment="Transaction status")

    amount_cents = Column(BigInteger, nullable=False)
    platform_fee_cents = Column(BigInteger, nullable=False, default=0)
    gateway_fee_cents = Column(BigInteger, nullable=False, default=0)
    net_amount_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="CAD")

    gateway_reference = Column(String(200), nullable=True, index=True, comment="Gateway id for this movement")
    description = Column(Text, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_payment_transactions_authorization_type", "authorization_id", "type"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, authorization_id={self.authorization_id}, "
            f"type='{self.type}', amount_cents={self.amount_cents}, status='{self.status}')>"
        )


class EscrowAccountModel(Base):
    __tablename__ = "escrow_accounts"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, nullable=False, index=True, comment="Booking")
    authorization_id = Column(Integer, nullable=False, unique=True, comment="One escrow per authorization")

    amount_held_cents = Column(BigInteger, nullable=False)
    amount_released_cents = Column(BigInteger, nullable=False, default=0)
    amount_refunded_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="CAD")

    status = Column(
        String(24),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/held/released/refunded/partially_refunded/disputed",
    )

    held_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    release_notes = Column(Text, nullable=True)

    def __repr__(self):
        return (
            f"<EscrowAccountModel(id={self.id}, booking_id={self.booking_id}, "
            f"held={self.amount_held_cents}, status='{self.status}')>"
        )
