"""
Ledger entities: money-movement rows and the per-booking escrow account.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException, InvalidStateException


class TransactionType(str, Enum):
    AUTHORIZATION = "authorization"
    CAPTURE = "capture"
    REFUND = "refund"
    COMPENSATION = "compensation"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CONFIRMED = "confirmed"
    CAPTURED = "captured"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class EscrowStatus(str, Enum):
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Transaction:
    id: Optional[int]
    authorization_id: int
    booking_id: int
    type: TransactionType
    status: TransactionStatus
    amount_cents: int
    currency: str
    user_id: Optional[int] = None
    platform_fee_cents: int = 0
    gateway_fee_cents: int = 0
    net_amount_cents: int = 0
    gateway_reference: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        self.type = TransactionType(self.type)
        self.status = TransactionStatus(self.status)
        for name in ("amount_cents", "platform_fee_cents", "gateway_fee_cents", "net_amount_cents"):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise DomainValidationException(f"{name} must be a non-negative integer", field=name)

    def set_status(self, status: TransactionStatus, now: Optional[datetime] = None) -> None:
        self.status = TransactionStatus(status)
        self.processed_at = now or _now()


@dataclass
class EscrowAccount:
    """
    Funds the platform holds for one booking.

    Invariant: amount_released + amount_refunded <= amount_held.
    """

    id: Optional[int]
    booking_id: int
    authorization_id: int
    amount_held_cents: int
    currency: str
    status: EscrowStatus = EscrowStatus.PENDING
    amount_released_cents: int = 0
    amount_refunded_cents: int = 0
    held_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    release_notes: Optional[str] = None

    def __post_init__(self):
        self.status = EscrowStatus(self.status)
        if self.amount_held_cents < 0:
            raise DomainValidationException("amount_held_cents must not be negative", field="amount_held_cents")
        self._check_balance()

    @property
    def remaining_cents(self) -> int:
        return self.amount_held_cents - self.amount_released_cents - self.amount_refunded_cents

    def _check_balance(self) -> None:
        if self.amount_released_cents < 0 or self.amount_refunded_cents < 0:
            raise DomainValidationException("escrow movements must not be negative", field="escrow")
        if self.amount_released_cents + self.amount_refunded_cents > self.amount_held_cents:
            raise DomainValidationException(
                "released + refunded exceeds the amount held",
                field="escrow",
                details={
                    "held": self.amount_held_cents,
                    "released": self.amount_released_cents,
                    "refunded": self.amount_refunded_cents,
                },
            )

    def hold(self, now: Optional[datetime] = None) -> None:
        if self.status != EscrowStatus.PENDING:
            raise InvalidStateException("can only hold funds from a pending escrow account",
                                        current_status=self.status.value)
        self.status = EscrowStatus.HELD
        self.held_at = now or _now()

    def release(self, amount_cents: int, notes: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """Account funds as paid out (capture); the unreleased remainder is the platform share."""
        if self.status not in (EscrowStatus.PENDING, EscrowStatus.HELD):
            raise InvalidStateException("can only release funds from a held escrow account",
                                        current_status=self.status.value)
        now = now or _now()
        if self.held_at is None:
            self.held_at = now
        self.amount_released_cents += amount_cents
        self._check_balance()
        self.status = EscrowStatus.RELEASED
        self.released_at = now
        self.release_notes = notes

    def settle_cancellation(self, refund_cents: int, compensation_cents: int,
                            notes: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """
        Refund the sender and release compensation to the traveler in one step.

        On an already released account the payout is reversed first, so the
        compensation replaces it rather than adding to it.
        """
        if self.status not in (EscrowStatus.PENDING, EscrowStatus.HELD, EscrowStatus.RELEASED):
            raise InvalidStateException("escrow account is already settled", current_status=self.status.value)
        now = now or _now()
        if self.status == EscrowStatus.RELEASED:
            self.amount_released_cents = 0
        self.amount_refunded_cents += refund_cents
        self.amount_released_cents += compensation_cents
        self._check_balance()
        if refund_cents == self.amount_held_cents:
            self.status = EscrowStatus.REFUNDED
        elif refund_cents == 0:
            self.status = EscrowStatus.RELEASED
        else:
            self.status = EscrowStatus.PARTIALLY_REFUNDED
        self.refunded_at = now
        if compensation_cents:
            self.released_at = now
        self.release_notes = notes
