"""
Money and fee arithmetic in integer minor units.

Everything here is pure: amounts are ints (cents), percentages are parsed as
Decimal so that no float ever touches an amount.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from domain.common.exceptions import DomainValidationException

Percent = Union[int, float, str, Decimal]

_HUNDRED = Decimal(100)


def _as_decimal(value: Percent) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _ensure_amount(amount: int, field: str = "amount_cents") -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise DomainValidationException(f"{field} must be an integer number of minor units", field=field)
    if amount < 0:
        raise DomainValidationException(f"{field} must not be negative: {amount}", field=field)


def percentage_of(amount: int, percent: Percent) -> int:
    """Return ``amount * percent / 100`` rounded half-up to a whole minor unit."""
    _ensure_amount(amount)
    pct = _as_decimal(percent)
    if pct < 0:
        raise DomainValidationException(f"percentage must not be negative: {percent}", field="percent")
    value = (Decimal(amount) * pct / _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(value)


def platform_fee(amount: int, percent: Percent, minimum_cents: int) -> int:
    """Marketplace commission: ``max(round(amount * pct), minimum)``, never above the amount."""
    _ensure_amount(minimum_cents, "minimum_platform_fee_cents")
    fee = max(percentage_of(amount, percent), minimum_cents)
    return min(fee, amount)


def payee_payout(amount: int, fee: int) -> int:
    _ensure_amount(amount)
    _ensure_amount(fee, "platform_fee_cents")
    if fee > amount:
        raise DomainValidationException("platform fee exceeds amount", field="platform_fee_cents")
    return amount - fee


def gateway_fee(amount: int, percent: Percent, fixed_cents: int) -> int:
    """Unrecoverable processor fee (percentage plus fixed part), capped at the amount."""
    _ensure_amount(fixed_cents, "gateway_fixed_fee_cents")
    if amount == 0:
        return 0
    return min(percentage_of(amount, percent) + fixed_cents, amount)


def requires_strong_authentication(amount: int, threshold_cents: int, enabled: bool = True) -> bool:
    return bool(enabled) and amount >= threshold_cents


@dataclass(frozen=True)
class RefundSplit:
    """How a held amount is divided when a booking is cancelled.

    ``refund_cents + compensation_cents + retained_cents == amount_cents`` always
    holds; ``retained_cents`` is what the platform keeps (gateway fee).
    """

    amount_cents: int
    refund_cents: int
    compensation_cents: int
    retained_cents: int
    refund_percentage: int
    compensation_percentage: int

    def __post_init__(self) -> None:
        total = self.refund_cents + self.compensation_cents + self.retained_cents
        if total != self.amount_cents:
            raise DomainValidationException(
                f"split does not add up: {total} != {self.amount_cents}",
                field="amount_cents",
            )
        for name in ("refund_cents", "compensation_cents", "retained_cents"):
            if getattr(self, name) < 0:
                raise DomainValidationException(f"{name} must not be negative", field=name)


def full_reversal(amount: int) -> RefundSplit:
    """Nothing was captured: the whole reservation goes back to the payer."""
    _ensure_amount(amount)
    return RefundSplit(amount, amount, 0, 0, 100, 0)


def refund_minus_gateway_fee(amount: int, fee: int) -> RefundSplit:
    _ensure_amount(amount)
    fee = min(fee, amount)
    refund = amount - fee
    pct = _share_percentage(refund, amount)
    return RefundSplit(amount, refund, 0, fee, pct, 0)


def split_net(amount: int, fee: int, sender_percentage: Percent) -> RefundSplit:
    """Split ``amount - fee`` between sender refund and traveler compensation.

    The sender share is rounded half-up; the traveler gets the remainder so
    no minor unit is lost.
    """
    _ensure_amount(amount)
    fee = min(fee, amount)
    net = amount - fee
    refund = percentage_of(net, sender_percentage)
    compensation = net - refund
    sender_pct = int(_as_decimal(sender_percentage))
    return RefundSplit(amount, refund, compensation, fee, sender_pct, 100 - sender_pct)


def compensation_only(amount: int, fee: int, compensation_percentage: Percent) -> RefundSplit:
    """No-show: the sender gets nothing, the traveler a share of the net, the platform the rest."""
    _ensure_amount(amount)
    fee = min(fee, amount)
    net = amount - fee
    compensation = percentage_of(net, compensation_percentage)
    retained = amount - compensation
    return RefundSplit(amount, 0, compensation, retained, 0, int(_as_decimal(compensation_percentage)))


def _share_percentage(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    return int((Decimal(part) * _HUNDRED / Decimal(whole)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
