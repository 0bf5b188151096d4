"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import GatewayAuthorizeRequest, GatewayAuthorization, GatewayStatus


@runtime_checkable
class PaymentGateway(Protocol):
    """Manual-capture gateway contract.

    Implementations raise GatewayRejectedException for declines and
    not-capturable states, GatewayUnavailableException for network/timeout
    failures that are safe to retry.
    """

    provider: str

    async def authorize(self, req: GatewayAuthorizeRequest) -> GatewayAuthorization: ...

    async def capture(self, handle: str, amount_to_capture_cents: int,
                      idempotency_key: Optional[str] = None) -> GatewayStatus: ...

    async def cancel(self, handle: str, idempotency_key: Optional[str] = None) -> GatewayStatus: ...

    async def refund(self, handle: str, amount_cents: int,
                     idempotency_key: Optional[str] = None) -> GatewayStatus: ...

    async def retrieve(self, handle: str) -> GatewayAuthorization: ...
