"""
Delivery verification codes handed to the traveler at pickup/drop-off.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

CODE_LENGTH = 6


class DeliveryCodeStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    REVOKED = "revoked"


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


@dataclass
class DeliveryCode:
    booking_id: int
    code: str
    status: DeliveryCodeStatus = DeliveryCodeStatus.ACTIVE
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    used_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = DeliveryCodeStatus(self.status)

    def matches(self, candidate: str) -> bool:
        return self.status == DeliveryCodeStatus.ACTIVE and secrets.compare_digest(self.code, candidate or "")

    def mark_used(self, now: datetime) -> None:
        self.status = DeliveryCodeStatus.USED
        self.used_at = now
