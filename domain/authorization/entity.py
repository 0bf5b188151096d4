"""
Payment authorization aggregate: one booking's deferred-capture payment cycle.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException, InvalidStateException


class AuthorizationStatus(str, Enum):
    """Authorization status; the single source of truth for every "is X" query"""
    PENDING = "pending"                              # funds reserved, waiting for the sender
    PENDING_GATEWAY_SETUP = "pending_gateway_setup"  # payee account not payable yet
    CONFIRMED = "confirmed"                          # sender confirmed, capture scheduled
    CAPTURED = "captured"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"                                # capture failed, may be retried


class CaptureReason(str, Enum):
    MANUAL = "manual"
    AUTO_SCHEDULED = "auto_scheduled"
    AUTO_PICKUP = "auto_pickup"
    ADMIN = "admin"
    RECONCILIATION = "reconciliation"


TERMINAL_STATUSES = frozenset(
    {AuthorizationStatus.CAPTURED, AuthorizationStatus.CANCELLED, AuthorizationStatus.EXPIRED}
)
CANCELLABLE_STATUSES = frozenset(
    {
        AuthorizationStatus.PENDING,
        AuthorizationStatus.PENDING_GATEWAY_SETUP,
        AuthorizationStatus.CONFIRMED,
        AuthorizationStatus.FAILED,
    }
)
CAPTURABLE_STATUSES = frozenset({AuthorizationStatus.CONFIRMED, AuthorizationStatus.FAILED})
RECONCILABLE_STATUSES = CAPTURABLE_STATUSES | {AuthorizationStatus.PENDING}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentAuthorization:
    """
    Authorization aggregate root.

    Business rules:
    1. amount and platform fee are non-negative integers in minor units, fee <= amount
    2. auto_capture_at <= expires_at once both are set
    3. status changes only through the transition methods below
    4. terminal statuses (captured/cancelled/expired) never change again
    """

    id: Optional[int]
    booking_id: int
    payer_id: int
    payee_id: int
    amount_cents: int
    currency: str
    platform_fee_cents: int
    status: AuthorizationStatus
    confirmation_deadline: datetime

    gateway_handle: Optional[str] = None
    destination_account: Optional[str] = None
    trip_departure_at: Optional[datetime] = None

    # Deadlines established on confirmation
    expires_at: Optional[datetime] = None
    auto_capture_at: Optional[datetime] = None

    capture_reason: Optional[CaptureReason] = None
    capture_attempts: int = 0
    last_error: Optional[str] = None
    cancellation_reason: Optional[str] = None

    confirmed_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    version: int = 0
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self._validate_amounts()
        self._validate_currency()
        self._normalize_timestamps()
        self._validate_deadlines()
        if self.metadata is None:
            self.metadata = {}

    def _validate_amounts(self) -> None:
        for name in ("amount_cents", "platform_fee_cents"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise DomainValidationException(f"{name} must be a non-negative integer: {value}", field=name)
        if self.platform_fee_cents > self.amount_cents:
            raise DomainValidationException(
                f"platform fee {self.platform_fee_cents} exceeds amount {self.amount_cents}",
                field="platform_fee_cents",
            )

    def _validate_currency(self) -> None:
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"invalid currency code: {self.currency}", field="currency")
        self.currency = self.currency.upper()

    def _normalize_timestamps(self) -> None:
        for name in (
            "confirmation_deadline", "trip_departure_at", "expires_at", "auto_capture_at",
            "confirmed_at", "captured_at", "cancelled_at", "expired_at", "created_at", "updated_at",
        ):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    def _validate_deadlines(self) -> None:
        if self.auto_capture_at and self.expires_at and self.auto_capture_at > self.expires_at:
            raise DomainValidationException("auto_capture_at must not be after expires_at", field="auto_capture_at")

    # ---- pure queries -------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def payee_amount_cents(self) -> int:
        return self.amount_cents - self.platform_fee_cents

    @property
    def active_booking_key(self) -> Optional[int]:
        """Booking id while non-terminal, None afterwards (backs the storage uniqueness rule)."""
        return None if self.is_terminal else self.booking_id

    def confirmation_elapsed(self, now: Optional[datetime] = None) -> bool:
        return (now or _now()) >= self.confirmation_deadline

    def capture_window_elapsed(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and (now or _now()) >= self.expires_at

    def can_be_confirmed(self, now: Optional[datetime] = None) -> bool:
        return self.status == AuthorizationStatus.PENDING and not self.confirmation_elapsed(now)

    def can_be_captured(self, now: Optional[datetime] = None) -> bool:
        return self.status in CAPTURABLE_STATUSES and not self.capture_window_elapsed(now)

    # ---- transitions --------------------------------------------------

    def _touch(self, now: datetime) -> None:
        self.updated_at = now

    def _require(self, allowed, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateException(
                f"cannot {action} an authorization in status {self.status.value}",
                current_status=self.status.value,
            )

    def attach_gateway_handle(self, handle: str, destination_account: str, *, confirmation_deadline: datetime,
                              now: Optional[datetime] = None) -> None:
        """Deferred reservation once the payee became payable: pending_gateway_setup -> pending."""
        self._require({AuthorizationStatus.PENDING_GATEWAY_SETUP}, "attach a gateway handle to")
        now = now or _now()
        self.gateway_handle = handle
        self.destination_account = destination_account
        self.confirmation_deadline = _ensure_utc(confirmation_deadline)
        self.status = AuthorizationStatus.PENDING
        self._touch(now)

    def confirm(self, *, expires_at: datetime, auto_capture_at: datetime, now: Optional[datetime] = None) -> None:
        """
        pending -> confirmed

        Guard: the confirmation deadline has not elapsed and the new capture
        window is still open.
        """
        now = now or _now()
        self._require({AuthorizationStatus.PENDING}, "confirm")
        if self.confirmation_elapsed(now):
            raise InvalidStateException(
                "confirmation deadline has passed",
                current_status=self.status.value,
                details={"confirmation_deadline": self.confirmation_deadline.isoformat()},
            )
        expires_at = _ensure_utc(expires_at)
        auto_capture_at = _ensure_utc(auto_capture_at)
        if expires_at <= now:
            raise InvalidStateException(
                "capture window already closed for this trip",
                current_status=self.status.value,
                details={"expires_at": expires_at.isoformat()},
            )
        if auto_capture_at > expires_at:
            raise DomainValidationException("auto_capture_at must not be after expires_at", field="auto_capture_at")
        self.status = AuthorizationStatus.CONFIRMED
        self.expires_at = expires_at
        self.auto_capture_at = auto_capture_at
        self.confirmed_at = now
        self._touch(now)

    def mark_captured(self, reason: CaptureReason, *, now: Optional[datetime] = None) -> None:
        """confirmed|failed -> captured, only while the capture window is open."""
        now = now or _now()
        self._require(CAPTURABLE_STATUSES, "capture")
        if self.capture_window_elapsed(now):
            raise InvalidStateException(
                "capture window has expired",
                current_status=self.status.value,
                details={"expires_at": self.expires_at.isoformat() if self.expires_at else None},
            )
        self.status = AuthorizationStatus.CAPTURED
        self.capture_reason = CaptureReason(reason)
        self.captured_at = now
        self.last_error = None
        self._touch(now)

    def reconcile_captured(self, *, now: Optional[datetime] = None) -> None:
        """
        pending|confirmed|failed -> captured, when the gateway already holds the funds.

        No capture-window guard: the money has moved and local state follows it.
        """
        now = now or _now()
        self._require(RECONCILABLE_STATUSES, "reconcile a capture on")
        self.status = AuthorizationStatus.CAPTURED
        self.capture_reason = CaptureReason.RECONCILIATION
        self.confirmed_at = self.confirmed_at or now
        self.captured_at = now
        self.last_error = None
        self._touch(now)

    def record_capture_failure(self, error: str, *, now: Optional[datetime] = None) -> int:
        """confirmed|failed -> failed; returns the new attempt count."""
        now = now or _now()
        self._require(CAPTURABLE_STATUSES, "record a capture failure on")
        self.status = AuthorizationStatus.FAILED
        self.capture_attempts += 1
        self.last_error = error
        self._touch(now)
        return self.capture_attempts

    def cancel(self, reason: Optional[str] = None, *, now: Optional[datetime] = None) -> None:
        now = now or _now()
        self._require(CANCELLABLE_STATUSES, "cancel")
        self.status = AuthorizationStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_at = now
        self._touch(now)

    def expire(self, *, now: Optional[datetime] = None, note: Optional[str] = None) -> None:
        now = now or _now()
        self._require(CANCELLABLE_STATUSES, "expire")
        self.status = AuthorizationStatus.EXPIRED
        self.expired_at = now
        if note:
            self.last_error = note
        self._touch(now)

    def active_deadline(self) -> tuple[str, datetime]:
        """Which deadline the expiry job should currently watch."""
        if self.status in (AuthorizationStatus.CONFIRMED, AuthorizationStatus.FAILED) and self.expires_at:
            return "capture", self.expires_at
        return "confirmation", self.confirmation_deadline
