from datetime import timedelta

import pytest

from domain.authorization import AuthorizationStatus, CaptureReason
from domain.common.exceptions import GatewayRejectedException, GatewayUnavailableException
from domain.scheduling import JobStatus, JobType

pytestmark = pytest.mark.asyncio


async def confirmed_authorization(services, booking, booking_id=1, **booking_kwargs):
    snapshot = booking.add_booking(booking_id, **booking_kwargs)
    authorization = await services.authorizations.create_for_booking(booking_id)
    return await services.authorizations.confirm(authorization.id, snapshot.sender_id)


async def jobs_for(uow_factory, authorization_id, *statuses):
    async with uow_factory(readonly=True) as uow:
        return await uow.jobs.list_for_authorization(authorization_id, statuses=list(statuses) or None)


async def test_nothing_due_runs_nothing(services, booking):
    await confirmed_authorization(services, booking)
    summary = await services.scheduler.run_due()
    assert summary.processed == 0
    assert summary.claim_lost == 0


async def test_auto_capture_runs_at_scheduled_time(services, booking, gateway, clock, uow_factory):
    authorization = await confirmed_authorization(services, booking)
    clock.now = authorization.auto_capture_at + timedelta(minutes=1)

    summary = await services.scheduler.run_due()

    # The capture cancels the still-due payment reminder before it is claimed
    assert summary.succeeded == 1
    assert summary.claim_lost == 1
    assert summary.by_type == {"auto_capture": 1}
    current = await services.authorizations.get(authorization.id)
    assert current.status == AuthorizationStatus.CAPTURED
    assert current.capture_reason == CaptureReason.AUTO_SCHEDULED
    assert len(gateway.calls_of("capture")) == 1

    completed = await jobs_for(uow_factory, authorization.id, JobStatus.COMPLETED)
    assert [job.job_type for job in completed] == [JobType.AUTO_CAPTURE]
    assert completed[0].result["captured"] is True


async def test_manual_capture_makes_auto_capture_job_moot(services, booking, clock, uow_factory):
    authorization = await confirmed_authorization(services, booking)
    await services.authorizations.capture(authorization.id)
    clock.now = authorization.auto_capture_at + timedelta(minutes=1)

    summary = await services.scheduler.run_due()

    assert summary.processed == 0
    assert await jobs_for(uow_factory, authorization.id, JobStatus.PENDING) == []


async def test_missed_confirmation_expires_and_releases_hold(services, booking, gateway, clock):
    booking.add_booking(1)
    authorization = await services.authorizations.create_for_booking(1)
    clock.advance(hours=4, minutes=1)

    summary = await services.scheduler.run_due()

    # Expiry outranks the overdue reminder and cancels it
    assert summary.succeeded == 1
    assert summary.claim_lost == 1
    current = await services.authorizations.get(authorization.id)
    assert current.status == AuthorizationStatus.EXPIRED
    assert gateway.calls_of("cancel")[0][0] == authorization.gateway_handle
    assert booking.events_for(1)[-1] == "expired"


async def test_uncaptured_authorization_expires_with_its_window(services, booking, clock):
    authorization = await confirmed_authorization(services, booking)
    await services.config.set("enable_auto_capture", False)
    clock.now = authorization.expires_at + timedelta(minutes=1)

    summary = await services.scheduler.run_due(job_types=[JobType.PAYMENT_EXPIRY])

    assert summary.succeeded == 1
    assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.EXPIRED


async def test_confirmation_reminder_is_queued_for_notification(services, booking, clock, uow_factory):
    booking.add_booking(1)
    authorization = await services.authorizations.create_for_booking(1)
    clock.advance(hours=2, minutes=1)

    summary = await services.scheduler.run_due()

    assert summary.succeeded == 1
    assert summary.by_type == {"confirmation_reminder": 1}
    async with uow_factory(readonly=True) as uow:
        pending = await uow.outbox.list_pending()
    reminder = [m for m in pending if m.event_type == "confirmation_reminder"]
    assert len(reminder) == 1
    assert reminder[0].authorization_id == authorization.id
    assert reminder[0].payload["deadline_type"] == "confirmation"


async def test_reminder_skipped_after_status_change(services, booking, clock):
    snapshot = booking.add_booking(1)
    authorization = await services.authorizations.create_for_booking(1)
    await services.authorizations.confirm(authorization.id, snapshot.sender_id)
    clock.advance(hours=2, minutes=1)

    summary = await services.scheduler.run_due()

    # Confirming cancelled the confirmation jobs
    assert summary.processed == 0


async def test_transient_capture_failure_retries_with_backoff(services, booking, gateway, clock, uow_factory):
    authorization = await confirmed_authorization(services, booking)
    clock.now = authorization.auto_capture_at + timedelta(minutes=1)
    gateway.fail_next("capture", GatewayUnavailableException("timeout", provider="stub"))

    first = await services.scheduler.run_due(job_types=[JobType.AUTO_CAPTURE])

    assert first.retried == 1
    assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.FAILED
    [job] = [j for j in await jobs_for(uow_factory, authorization.id, JobStatus.PENDING)
             if j.job_type == JobType.AUTO_CAPTURE]
    assert job.attempts == 1
    assert job.scheduled_at == clock() + timedelta(minutes=10)

    clock.advance(minutes=11)
    second = await services.scheduler.run_due(job_types=[JobType.AUTO_CAPTURE])

    assert second.succeeded == 1
    assert (await services.authorizations.get(authorization.id)).status == AuthorizationStatus.CAPTURED


async def test_decline_fails_job_and_flags_operators(services, booking, gateway, clock, uow_factory):
    authorization = await confirmed_authorization(services, booking)
    clock.now = authorization.auto_capture_at + timedelta(minutes=1)
    gateway.fail_next("capture", GatewayRejectedException("card_declined", provider="stub"))

    summary = await services.scheduler.run_due(job_types=[JobType.AUTO_CAPTURE])

    assert summary.failed == 1
    failed = await jobs_for(uow_factory, authorization.id, JobStatus.FAILED)
    assert [job.job_type for job in failed] == [JobType.AUTO_CAPTURE]
    timeline = await services.authorizations.timeline(authorization.id)
    exhausted = [e for e in timeline if e.event_type.value == "job_exhausted"]
    assert len(exhausted) == 1
    assert exhausted[0].requires_attention is True

    assert await services.scheduler.retry_failed_jobs() == 1
    requeued = await jobs_for(uow_factory, authorization.id, JobStatus.PENDING)
    assert JobType.AUTO_CAPTURE in {job.job_type for job in requeued}


async def test_later_capture_leaves_exhausted_job_failed(services, booking, gateway, clock, uow_factory):
    authorization = await confirmed_authorization(services, booking)
    clock.now = authorization.auto_capture_at + timedelta(minutes=1)
    gateway.fail_next("capture", GatewayRejectedException("card_declined", provider="stub"))
    await services.scheduler.run_due(job_types=[JobType.AUTO_CAPTURE])

    outcome = await services.authorizations.capture(authorization.id, CaptureReason.MANUAL)

    assert outcome.authorization.status == AuthorizationStatus.CAPTURED
    failed = await jobs_for(uow_factory, authorization.id, JobStatus.FAILED)
    assert [job.job_type for job in failed] == [JobType.AUTO_CAPTURE]
    assert (await services.scheduler.queue_stats())["failed_today"] == 1
    assert await services.scheduler.retry_failed_jobs() == 1


async def test_claim_is_exclusive(services, booking, uow_factory, clock):
    authorization = await confirmed_authorization(services, booking)
    [job] = [j for j in await jobs_for(uow_factory, authorization.id, JobStatus.PENDING)
             if j.job_type == JobType.AUTO_CAPTURE]

    async with uow_factory() as uow:
        first = await uow.jobs.claim(job.id, clock())
    async with uow_factory() as uow:
        second = await uow.jobs.claim(job.id, clock())

    assert first is not None
    assert first.status == JobStatus.RUNNING
    assert first.attempts == 1
    assert second is None


async def test_stuck_running_jobs_are_recovered(services, booking, uow_factory, clock):
    authorization = await confirmed_authorization(services, booking)
    [job] = [j for j in await jobs_for(uow_factory, authorization.id, JobStatus.PENDING)
             if j.job_type == JobType.AUTO_CAPTURE]
    async with uow_factory() as uow:
        await uow.jobs.claim(job.id, clock())

    clock.advance(minutes=31)
    assert await services.scheduler.recover_stuck_jobs(threshold_minutes=30) == 1

    [recovered] = [j for j in await jobs_for(uow_factory, authorization.id, JobStatus.PENDING)
                   if j.job_type == JobType.AUTO_CAPTURE]
    assert recovered.error_message == "worker did not finish the job"


async def test_orphaned_authorization_gets_jobs_again(services, booking, uow_factory, clock):
    authorization = await confirmed_authorization(services, booking)
    async with uow_factory() as uow:
        await uow.jobs.cancel_pending(authorization.id, reason="lost", now=clock())

    created = await services.scheduler.reschedule_orphans()

    assert created == 2
    types = {job.job_type for job in await jobs_for(uow_factory, authorization.id, JobStatus.PENDING)}
    assert types == {JobType.PAYMENT_EXPIRY, JobType.AUTO_CAPTURE}


async def test_queue_stats_and_metrics(services, booking, clock):
    authorization = await confirmed_authorization(services, booking)
    clock.now = authorization.auto_capture_at + timedelta(minutes=1)
    await services.scheduler.run_due()

    stats = await services.scheduler.queue_stats()
    assert stats["completed_today"] == 1
    assert stats["pending"] == 0
    assert stats["by_status"]["cancelled"] == 4

    metrics = await services.scheduler.performance_metrics()
    assert metrics["completed"] == 1
    assert metrics["failed"] == 0
    assert metrics["success_rate"] == 1.0
