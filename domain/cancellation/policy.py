"""
Cancellation policy: classify a cancellation into a bucket and split the money.

Thresholds and percentages come in through ``CancellationPolicy`` so the
caller decides where they are read from.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from domain.authorization.entity import AuthorizationStatus, PaymentAuthorization
from domain.authorization.money import (
    RefundSplit,
    compensation_only,
    full_reversal,
    gateway_fee,
    refund_minus_gateway_fee,
    split_net,
)
from domain.common.exceptions import InvalidStateException


class CancellationActor(str, Enum):
    SENDER = "sender"
    TRAVELER = "traveler"
    SYSTEM = "system"


class CancellationBucket(str, Enum):
    FREE = "free"
    EARLY = "early"
    LATE = "late"
    NO_SHOW = "no_show"


@dataclass(frozen=True)
class CancellationPolicy:
    late_cancellation_hours: int = 24
    late_cancellation_sender_percentage: int = 50
    no_show_compensation_percentage: int = 50
    gateway_fee_percentage: float = 2.9
    gateway_fixed_fee_cents: int = 30


@dataclass(frozen=True)
class CancellationDecision:
    bucket: CancellationBucket
    split: RefundSplit
    hours_before_departure: Optional[float]

    @property
    def refund_percentage(self) -> int:
        return self.split.refund_percentage

    @property
    def compensation_percentage(self) -> int:
        return self.split.compensation_percentage

    def to_dict(self) -> dict:
        return {
            "bucket": self.bucket.value,
            "amount_cents": self.split.amount_cents,
            "refund_cents": self.split.refund_cents,
            "compensation_cents": self.split.compensation_cents,
            "retained_cents": self.split.retained_cents,
            "refund_percentage": self.refund_percentage,
            "compensation_percentage": self.compensation_percentage,
            "hours_before_departure": (
                round(self.hours_before_departure, 2) if self.hours_before_departure is not None else None
            ),
        }


_UNCONFIRMED = frozenset({AuthorizationStatus.PENDING, AuthorizationStatus.PENDING_GATEWAY_SETUP})
_CLOSED = frozenset({AuthorizationStatus.CANCELLED, AuthorizationStatus.EXPIRED})


def classify(
    actor: CancellationActor,
    authorization: PaymentAuthorization,
    hours_before_departure: Optional[float],
    policy: CancellationPolicy,
    *,
    no_show: bool = False,
) -> CancellationDecision:
    """
    Decide the bucket for cancelling ``authorization``.

    ``hours_before_departure`` of None means the departure is unknown and is
    treated as far away.
    """
    status = AuthorizationStatus(authorization.status)
    if status in _CLOSED:
        raise InvalidStateException(
            f"authorization is already {status.value}", current_status=status.value
        )

    amount = authorization.amount_cents
    fee = gateway_fee(amount, policy.gateway_fee_percentage, policy.gateway_fixed_fee_cents)
    hours = hours_before_departure

    if no_show:
        if status in _UNCONFIRMED:
            raise InvalidStateException(
                "no-show requires a confirmed booking", current_status=status.value
            )
        split = compensation_only(amount, fee, policy.no_show_compensation_percentage)
        return CancellationDecision(CancellationBucket.NO_SHOW, split, hours)

    if actor == CancellationActor.TRAVELER:
        # Sender is not at fault: standard refund regardless of timing
        if status in _UNCONFIRMED:
            return CancellationDecision(CancellationBucket.FREE, full_reversal(amount), hours)
        return CancellationDecision(CancellationBucket.EARLY, refund_minus_gateway_fee(amount, fee), hours)

    if status in _UNCONFIRMED:
        return CancellationDecision(CancellationBucket.FREE, full_reversal(amount), hours)

    # Confirmed or captured: never free
    if hours is None or hours >= policy.late_cancellation_hours:
        return CancellationDecision(CancellationBucket.EARLY, refund_minus_gateway_fee(amount, fee), hours)
    split = split_net(amount, fee, policy.late_cancellation_sender_percentage)
    return CancellationDecision(CancellationBucket.LATE, split, hours)
