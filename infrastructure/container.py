"""
Wiring of the payment services.

The HTTP dependencies and the Celery tasks both build their services here,
so a worker and an API process always run the same object graph.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from application.ports.cache import CachePort
from application.ports.collaborators import BookingCollaborator, NotificationSink
from application.ports.payment_gateway import PaymentGateway
from application.services.authorization_service import AuthorizationService
from application.services.cancellation_service import CancellationService
from application.services.configuration_service import PaymentConfigurationService
from application.services.delivery_code_service import DeliveryCodeService
from application.services.job_queue import JobQueue
from application.services.job_scheduler import JobScheduler
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.settings import payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.api_clients import BookingHttpClient, NotificationHttpClient
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import make_uow_factory
from shared.clock import utcnow


@dataclass
class PaymentServices:
    config: PaymentConfigurationService
    authorizations: AuthorizationService
    scheduler: JobScheduler
    cancellations: CancellationService
    reconciliation: ReconciliationService
    notifications: NotificationDispatcher
    delivery_codes: DeliveryCodeService
    gateway: PaymentGateway
    booking: BookingCollaborator
    sink: NotificationSink

    async def aclose(self) -> None:
        """Close the HTTP clients this container owns."""
        for collaborator in (self.booking, self.sink):
            close = getattr(collaborator, "close", None)
            if close is not None:
                await close()


def default_booking_client() -> BookingHttpClient:
    cfg = settings.collaborators
    return BookingHttpClient(cfg.booking_base_url, timeout=cfg.timeout, max_retries=cfg.max_retries,
                             auth_token=cfg.api_token)


def default_notification_client() -> NotificationHttpClient:
    cfg = settings.collaborators
    return NotificationHttpClient(cfg.notification_base_url, timeout=cfg.timeout, max_retries=cfg.max_retries,
                                  auth_token=cfg.api_token)


def build_payment_services(
    *,
    uow_factory: Optional[Callable[..., AbstractUnitOfWork]] = None,
    gateway: Optional[PaymentGateway] = None,
    booking: Optional[BookingCollaborator] = None,
    sink: Optional[NotificationSink] = None,
    cache: Optional[CachePort] = None,
    clock: Callable[[], datetime] = utcnow,
) -> PaymentServices:
    uow_factory = uow_factory or make_uow_factory()
    gateway = gateway or get_payment_gateway()
    booking = booking or default_booking_client()
    sink = sink or default_notification_client()

    queue = JobQueue(clock=clock)
    config = PaymentConfigurationService(uow_factory, cache=cache,
                                         cache_ttl=settings.redis.config_cache_ttl_seconds)
    authorizations = AuthorizationService(uow_factory, gateway, config, booking, queue=queue, clock=clock)
    cancellations = CancellationService(uow_factory, gateway, config, booking, queue=queue, clock=clock)
    return PaymentServices(
        config=config,
        authorizations=authorizations,
        scheduler=JobScheduler(uow_factory, authorizations, config, queue=queue, clock=clock),
        cancellations=cancellations,
        reconciliation=ReconciliationService(
            uow_factory, gateway, authorizations, cancellations,
            min_age_minutes=payment_settings.reconciliation.min_age_minutes,
            lookback_hours=payment_settings.reconciliation.lookback_hours,
            clock=clock,
        ),
        notifications=NotificationDispatcher(uow_factory, sink,
                                             max_attempts=payment_settings.notifications.max_attempts,
                                             clock=clock),
        delivery_codes=DeliveryCodeService(uow_factory, clock=clock),
        gateway=gateway,
        booking=booking,
        sink=sink,
    )
