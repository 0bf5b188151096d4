"""
Deadline arithmetic tied to trip departure.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


@dataclass(frozen=True)
class CaptureWindow:
    expires_at: datetime
    auto_capture_at: datetime


def confirmation_deadline(now: datetime, deadline_hours: int) -> datetime:
    return now + timedelta(hours=deadline_hours)


def capture_window(
    now: datetime,
    departure_at: Optional[datetime],
    *,
    lead_hours: int,
    max_hold_days: int,
    safety_margin_hours: int,
) -> CaptureWindow:
    """
    expires_at = min(departure - lead time, now + max hold window)
    auto_capture_at = expires_at - safety margin, never earlier than now

    The returned window may already be closed (expires_at <= now) when the
    departure is too close; the caller decides how to reject it.
    """
    hold_limit = now + timedelta(days=max_hold_days)
    if departure_at is not None:
        expires_at = min(departure_at - timedelta(hours=lead_hours), hold_limit)
    else:
        expires_at = hold_limit
    auto_capture_at = max(expires_at - timedelta(hours=safety_margin_hours), now)
    if auto_capture_at > expires_at:
        auto_capture_at = expires_at
    return CaptureWindow(expires_at=expires_at, auto_capture_at=auto_capture_at)


def hours_until(now: datetime, moment: Optional[datetime]) -> Optional[float]:
    if moment is None:
        return None
    return (moment - now).total_seconds() / 3600.0
