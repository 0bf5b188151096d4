"""
Base gateway client implementing shared concerns: retry, timeouts, logging, status mapping.

Concrete providers subclass and implement the provider-specific calls.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger
from domain.common.exceptions import GatewayUnavailableException
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)
_stdlib_logger = logging.getLogger(__name__)

T = TypeVar("T")


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    @property
    def total_timeout(self) -> float:
        return float(self._timeouts_cfg["total"])

    async def _call_blocking(self, fn: Callable[[], T]) -> T:
        """Run a blocking SDK call off the event loop, bounded by the total timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.total_timeout)
        except asyncio.TimeoutError as exc:
            raise GatewayUnavailableException(
                f"{self.provider} call timed out after {self.total_timeout}s", provider=self.provider,
                provider_code="timeout",
            ) from exc

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Retry transient failures; declines surface immediately."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(GatewayUnavailableException),
            before_sleep=before_sleep_log(_stdlib_logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await fn()
        raise GatewayUnavailableException("gateway call was not attempted", provider=self.provider)

    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
