import pytest

from domain.authorization import money
from domain.common.exceptions import DomainValidationException


def test_percentage_rounds_half_up():
    assert money.percentage_of(1010, 5) == 51  # 50.5 -> 51
    assert money.percentage_of(1009, 5) == 50  # 50.45 -> 50
    assert money.percentage_of(0, 5) == 0


def test_percentage_accepts_string_and_float_percent():
    assert money.percentage_of(10000, "2.9") == 290
    assert money.percentage_of(10000, 2.9) == 290


def test_platform_fee_uses_minimum_and_never_exceeds_amount():
    assert money.platform_fee(10000, 5.0, 50) == 500
    assert money.platform_fee(500, 5.0, 50) == 50
    assert money.platform_fee(30, 5.0, 50) == 30


def test_gateway_fee_is_percentage_plus_fixed_capped_at_amount():
    assert money.gateway_fee(10000, 2.9, 30) == 320
    assert money.gateway_fee(20, 2.9, 30) == 20
    assert money.gateway_fee(0, 2.9, 30) == 0


def test_payee_payout_rejects_fee_above_amount():
    assert money.payee_payout(10000, 500) == 9500
    with pytest.raises(DomainValidationException):
        money.payee_payout(100, 101)


@pytest.mark.parametrize("amount", [-1, 1.5, True])
def test_amounts_must_be_non_negative_integers(amount):
    with pytest.raises(DomainValidationException):
        money.percentage_of(amount, 5)


def test_negative_percentage_rejected():
    with pytest.raises(DomainValidationException):
        money.percentage_of(100, -1)


def test_strong_authentication_threshold_is_inclusive():
    assert money.requires_strong_authentication(50000, 50000) is True
    assert money.requires_strong_authentication(49999, 50000) is False
    assert money.requires_strong_authentication(90000, 50000, enabled=False) is False


def test_full_reversal_refunds_everything():
    split = money.full_reversal(10000)
    assert (split.refund_cents, split.compensation_cents, split.retained_cents) == (10000, 0, 0)
    assert split.refund_percentage == 100


def test_refund_minus_gateway_fee():
    split = money.refund_minus_gateway_fee(10000, 320)
    assert split.refund_cents == 9680
    assert split.retained_cents == 320
    assert split.refund_percentage == 97


def test_split_net_gives_traveler_the_remainder():
    split = money.split_net(10001, 320, 50)
    # net 9681: sender 4841 (4840.5 rounded up), traveler 4840
    assert split.refund_cents == 4841
    assert split.compensation_cents == 4840
    assert split.retained_cents == 320
    assert split.refund_percentage == 50
    assert split.compensation_percentage == 50


def test_compensation_only_gives_sender_nothing():
    split = money.compensation_only(10000, 320, 50)
    assert split.refund_cents == 0
    assert split.compensation_cents == 4840
    assert split.retained_cents == 5160


def test_refund_split_must_add_up():
    with pytest.raises(DomainValidationException):
        money.RefundSplit(100, 50, 10, 10, 50, 10)


def test_fee_larger_than_amount_is_clamped_in_splits():
    split = money.refund_minus_gateway_fee(20, 320)
    assert split.refund_cents == 0
    assert split.retained_cents == 20
