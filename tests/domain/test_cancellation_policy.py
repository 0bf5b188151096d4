from datetime import datetime, timedelta, timezone

import pytest

from domain.authorization.entity import AuthorizationStatus, PaymentAuthorization
from domain.cancellation import CancellationActor, UserReliability, classify
from domain.cancellation.policy import CancellationBucket, CancellationPolicy
from domain.common.exceptions import InvalidStateException

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
POLICY = CancellationPolicy()


def authorization(status: AuthorizationStatus) -> PaymentAuthorization:
    return PaymentAuthorization(
        id=1,
        booking_id=10,
        payer_id=101,
        payee_id=202,
        amount_cents=10000,
        currency="CAD",
        platform_fee_cents=500,
        status=status,
        confirmation_deadline=NOW + timedelta(hours=4),
        gateway_handle="pi_1",
    )


@pytest.mark.parametrize("hours", [None, 200, 48, 24])
def test_confirmed_sender_far_ahead_is_early_not_free(hours):
    decision = classify(CancellationActor.SENDER, authorization(AuthorizationStatus.CONFIRMED), hours, POLICY)
    assert decision.bucket == CancellationBucket.EARLY
    assert decision.split.refund_cents == 9680
    assert decision.split.retained_cents == 320


@pytest.mark.parametrize("hours", [12, 23.9])
def test_sender_late_splits_net(hours):
    decision = classify(CancellationActor.SENDER, authorization(AuthorizationStatus.CONFIRMED), hours, POLICY)
    assert decision.bucket == CancellationBucket.LATE
    assert decision.split.refund_cents == 4840
    assert decision.split.compensation_cents == 4840
    assert decision.split.retained_cents == 320


def test_unconfirmed_is_always_free():
    for status in (AuthorizationStatus.PENDING, AuthorizationStatus.PENDING_GATEWAY_SETUP):
        decision = classify(CancellationActor.SENDER, authorization(status), 1, POLICY)
        assert decision.bucket == CancellationBucket.FREE


def test_captured_far_ahead_is_early_not_free():
    decision = classify(CancellationActor.SENDER, authorization(AuthorizationStatus.CAPTURED), 200, POLICY)
    assert decision.bucket == CancellationBucket.EARLY


def test_traveler_cancellation_ignores_timing():
    decision = classify(CancellationActor.TRAVELER, authorization(AuthorizationStatus.CONFIRMED), 1, POLICY)
    assert decision.bucket == CancellationBucket.EARLY
    assert decision.split.compensation_cents == 0
    pending = classify(CancellationActor.TRAVELER, authorization(AuthorizationStatus.PENDING), 1, POLICY)
    assert pending.bucket == CancellationBucket.FREE


def test_no_show_compensates_traveler():
    decision = classify(CancellationActor.TRAVELER, authorization(AuthorizationStatus.CONFIRMED), 0, POLICY,
                        no_show=True)
    assert decision.bucket == CancellationBucket.NO_SHOW
    assert decision.split.refund_cents == 0
    assert decision.split.compensation_cents == 4840
    assert decision.to_dict()["compensation_percentage"] == 50


def test_no_show_needs_confirmed_booking():
    with pytest.raises(InvalidStateException):
        classify(CancellationActor.TRAVELER, authorization(AuthorizationStatus.PENDING), 0, POLICY, no_show=True)


@pytest.mark.parametrize("status", [AuthorizationStatus.CANCELLED, AuthorizationStatus.EXPIRED])
def test_closed_authorizations_cannot_be_cancelled(status):
    with pytest.raises(InvalidStateException):
        classify(CancellationActor.SENDER, authorization(status), 100, POLICY)


def test_policy_percentages_are_configurable():
    policy = CancellationPolicy(late_cancellation_sender_percentage=25)
    decision = classify(CancellationActor.SENDER, authorization(AuthorizationStatus.CONFIRMED), 2, policy)
    assert decision.split.refund_cents == 2420
    assert decision.split.compensation_cents == 7260


def test_reliability_penalty_floors_at_zero():
    reliability = UserReliability(user_id=202, score=7)
    reliability.apply_cancellation_penalty(5, NOW)
    reliability.apply_cancellation_penalty(5, NOW)
    assert reliability.score == 0
    assert reliability.cancellation_count == 2
    assert reliability.last_cancellation_at == NOW
