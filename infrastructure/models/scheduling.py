"""
Scheduled job table (the persistent job queue).
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class ScheduledJobModel(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True, index=True)

    job_type = Column(
        String(32),
        nullable=False,
        index=True,
        comment="auto_capture/payment_expiry/confirmation_reminder/payment_reminder",
    )
    authorization_id = Column(Integer, nullable=False, index=True, comment="Target authorization")
    booking_id = Column(Integer, nullable=False, index=True, comment="Booking (denormalized)")

    scheduled_at = Column(DateTime(timezone=True), nullable=False, comment="Due time")
    status = Column(
        String(16),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/running/completed/failed/cancelled",
    )
    priority = Column(Integer, nullable=False, default=5, comment="Lower runs sooner")
    attempts = Column(Integer, nullable=False, default=0, comment="Runs started")
    max_attempts = Column(Integer, nullable=False, default=3, comment="Attempt budget")

    payload = Column(JSON, nullable=True, comment="Handler input")
    result = Column(JSON, nullable=True, comment="Handler output")
    error_message = Column(Text, nullable=True, comment="Last failure")

    started_at = Column(DateTime(timezone=True), nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        # Runner scan: pending jobs by due time and priority
        Index("ix_scheduled_jobs_due", "status", "scheduled_at", "priority"),
        Index("ix_scheduled_jobs_authorization_status", "authorization_id", "status"),
    )

    def __repr__(self):
        return (
            f"<ScheduledJobModel(id={self.id}, job_type='{self.job_type}', "
            f"authorization_id={self.authorization_id}, status='{self.status}')>"
        )
