"""
Delivery verification codes.

The code is generated with ``secrets`` and stored against a unique
constraint; a collision just means another draw.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from core.logging_config import get_logger
from domain.common.exceptions import CodeCollisionException, NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.delivery import DeliveryCode, generate_code
from shared.clock import utcnow

logger = get_logger(__name__)


class DeliveryCodeService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        max_attempts: int = 5,
        generator: Callable[[], str] = generate_code,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._max_attempts = max_attempts
        self._generator = generator
        self._clock = clock

    async def issue(self, booking_id: int) -> DeliveryCode:
        """Return the booking's active code, creating one if needed."""
        async with self._uow_factory(readonly=True) as uow:
            existing = await uow.delivery_codes.get_active_for_booking(booking_id)
        if existing is not None:
            return existing

        for attempt in range(1, self._max_attempts + 1):
            candidate = DeliveryCode(booking_id=booking_id, code=self._generator(), created_at=self._clock())
            async with self._uow_factory() as uow:
                saved = await uow.delivery_codes.try_insert(candidate)
            if saved is not None:
                logger.info("delivery_code_issued", booking_id=booking_id, attempt=attempt)
                return saved
            logger.debug("delivery_code_collision", booking_id=booking_id, attempt=attempt)

        logger.error("delivery_code_generation_exhausted", booking_id=booking_id, attempts=self._max_attempts)
        raise CodeCollisionException(self._max_attempts)

    async def verify(self, booking_id: int, code: str) -> bool:
        async with self._uow_factory() as uow:
            active = await uow.delivery_codes.get_active_for_booking(booking_id)
            if active is None:
                raise NotFoundException("delivery_code", f"booking:{booking_id}")
            if not active.matches(code):
                logger.warning("delivery_code_mismatch", booking_id=booking_id)
                return False
            active.mark_used(self._clock())
            await uow.delivery_codes.save(active)
        logger.info("delivery_code_verified", booking_id=booking_id)
        return True
