"""
Cancellation attempt audit and traveler reliability tables.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, Index
from datetime import datetime, timezone

from .base import Base


class CancellationAttemptModel(Base):
    __tablename__ = "cancellation_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    booking_id = Column(Integer, nullable=True, index=True)
    trip_id = Column(Integer, nullable=True, index=True)
    attempt_type = Column(String(20), nullable=False, comment="booking_cancel/trip_cancel/no_show")
    bucket = Column(String(20), nullable=True, comment="Applied cancellation bucket")
    allowed = Column(Boolean, nullable=False, comment="False when the attempt was refused")
    denial_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        # Rate-limit window count
        Index("ix_cancellation_attempts_window", "user_id", "attempt_type", "allowed", "created_at"),
    )

    def __repr__(self):
        return (
            f"<CancellationAttemptModel(id={self.id}, user_id={self.user_id}, "
            f"attempt_type='{self.attempt_type}', allowed={self.allowed})>"
        )


class UserReliabilityModel(Base):
    __tablename__ = "user_reliability"

    user_id = Column(Integer, primary_key=True)
    score = Column(Integer, nullable=False, default=100, comment="0-100")
    cancellation_count = Column(Integer, nullable=False, default=0)
    last_cancellation_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<UserReliabilityModel(user_id={self.user_id}, score={self.score})>"
