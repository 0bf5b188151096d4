"""
Notification outbox and delivery code tables.
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class NotificationOutboxModel(Base):
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, index=True)
    authorization_id = Column(Integer, nullable=True, index=True)
    booking_id = Column(Integer, nullable=True)
    event_type = Column(String(40), nullable=False)
    actor_id = Column(Integer, nullable=True)
    amount_cents = Column(BigInteger, nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(String(16), nullable=False, default="pending", comment="pending/sent/failed")
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_notification_outbox_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<NotificationOutboxModel(id={self.id}, event_type='{self.event_type}', status='{self.status}')>"


class DeliveryCodeModel(Base):
    __tablename__ = "delivery_codes"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, nullable=False, index=True)
    code = Column(String(12), nullable=False, unique=True, comment="Verification code")
    status = Column(String(16), nullable=False, default="active", comment="active/used/revoked")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    used_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<DeliveryCodeModel(id={self.id}, booking_id={self.booking_id}, status='{self.status}')>"
