"""
Payment event log table (insert only).
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean, Index
from datetime import datetime, timezone

from .base import Base


class PaymentEventLogModel(Base):
    __tablename__ = "payment_event_logs"

    id = Column(Integer, primary_key=True, index=True)
    authorization_id = Column(Integer, nullable=True, index=True)
    booking_id = Column(Integer, nullable=True, index=True)
    user_id = Column(Integer, nullable=True)

    event_type = Column(String(40), nullable=False, index=True, comment="Event type")
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    requires_attention = Column(Boolean, nullable=False, default=False, index=True,
                                comment="Needs an operator")
    payload = Column(JSON, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_payment_event_logs_authorization_created", "authorization_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentEventLogModel(id={self.id}, event_type='{self.event_type}', "
            f"authorization_id={self.authorization_id})>"
        )
