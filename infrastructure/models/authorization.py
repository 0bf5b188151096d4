"""
Payment authorization table.
Storage mapping only; the rules live in domain.authorization.entity.
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class PaymentAuthorizationModel(Base):
    __tablename__ = "payment_authorizations"

    id = Column(Integer, primary_key=True, index=True)

    # Booking parties
    booking_id = Column(Integer, nullable=False, index=True, comment="Booking id")
    payer_id = Column(Integer, nullable=False, index=True, comment="Sender (payer)")
    payee_id = Column(Integer, nullable=False, index=True, comment="Traveler (payee)")

    # Gateway
    gateway_handle = Column(String(200), nullable=True, unique=True, comment="Gateway authorization handle")
    destination_account = Column(String(200), nullable=True, comment="Payee's connected gateway account")

    # Amounts in minor units
    amount_cents = Column(BigInteger, nullable=False, comment="Authorized amount")
    currency = Column(String(3), nullable=False, default="CAD", comment="ISO-4217 currency")
    platform_fee_cents = Column(BigInteger, nullable=False, default=0, comment="Platform fee")

    status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/pending_gateway_setup/confirmed/captured/cancelled/expired/failed",
    )

    # Deadlines
    confirmation_deadline = Column(DateTime(timezone=True), nullable=False, comment="Sender confirmation deadline")
    expires_at = Column(DateTime(timezone=True), nullable=True, comment="Capture expiry deadline")
    auto_capture_at = Column(DateTime(timezone=True), nullable=True, comment="Scheduled capture time")
    trip_departure_at = Column(DateTime(timezone=True), nullable=True, comment="Departure snapshot")

    capture_reason = Column(String(32), nullable=True, comment="manual/auto_scheduled/auto_pickup/admin")
    capture_attempts = Column(Integer, nullable=False, default=0, comment="Capture attempts so far")
    last_error = Column(Text, nullable=True, comment="Last gateway error")
    cancellation_reason = Column(Text, nullable=True, comment="Cancellation reason")

    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    # Booking id while non-terminal, NULL afterwards: at most one live authorization per booking
    active_booking_key = Column(Integer, nullable=True, unique=True, comment="Live-authorization guard")
    version = Column(Integer, nullable=False, default=0, comment="Optimistic lock version")

    extra_metadata = Column("metadata", JSON, nullable=True, comment="Extra metadata")

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        Index("ix_payment_authorizations_status_updated", "status", "updated_at"),
        Index("ix_payment_authorizations_payee_status", "payee_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentAuthorizationModel(id={self.id}, booking_id={self.booking_id}, "
            f"amount_cents={self.amount_cents}, status='{self.status}', version={self.version})>"
        )
