"""
Stripe PaymentIntents adapter (manual capture) using the official stripe-python SDK.

Authorization is a PaymentIntent created with ``capture_method="manual"`` and a
destination charge (``transfer_data.destination`` + ``application_fee_amount``),
so capture moves funds to the traveler's connected account minus the platform
fee. The SDK is synchronous; calls run in a worker thread bounded by the
configured total timeout, and our own tenacity loop does the retrying.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

import stripe

from application.dtos.payments import GatewayAuthorization, GatewayAuthorizeRequest, GatewayStatus
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import GatewayRejectedException, GatewayUnavailableException
from infrastructure.external.payments.base import BasePaymentClient


logger = get_logger(__name__)

_REFUND_STATUS = {"succeeded": "refunded", "pending": "refund_pending"}


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, secret_key: Optional[str] = None, api_version: Optional[str] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        self._api_key = secret_key or payment_settings.stripe.secret_key
        if not self._api_key:
            raise RuntimeError("PAYMENT__STRIPE__SECRET_KEY not configured")
        self._api_version = api_version or payment_settings.stripe.api_version

    def _options(self, idempotency_key: Optional[str] = None) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            options["stripe_version"] = self._api_version
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        return options

    def _translate(self, exc: Exception, operation: str) -> Exception:
        """Map SDK errors onto the two gateway error kinds."""
        code = getattr(exc, "code", None)
        message = getattr(exc, "user_message", None) or str(exc)
        if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
            return GatewayUnavailableException(message, provider=self.provider, provider_code=code or operation)
        if isinstance(exc, stripe.StripeError):
            status = getattr(exc, "http_status", None) or 0
            if status >= 500 or isinstance(exc, stripe.APIError):
                return GatewayUnavailableException(message, provider=self.provider, provider_code=code)
            return GatewayRejectedException(message, provider=self.provider, provider_code=code)
        return exc

    async def _invoke(self, operation: str, fn: Callable[[], Any]) -> Any:
        async def once():
            try:
                return await self._call_blocking(fn)
            except stripe.StripeError as exc:
                raise self._translate(exc, operation) from exc

        return await self._retry(once)

    def _to_authorization(self, pi: Any) -> GatewayAuthorization:
        provider_status = str(pi["status"])
        return GatewayAuthorization(
            handle=str(pi["id"]),
            status=self._map_status(provider_status),
            provider=self.provider,
            client_secret=pi.get("client_secret"),
            amount_cents=pi.get("amount"),
            amount_capturable_cents=pi.get("amount_capturable"),
            amount_received_cents=pi.get("amount_received"),
            provider_status=provider_status,
        )

    def _to_status(self, pi: Any) -> GatewayStatus:
        return GatewayStatus(
            handle=str(pi["id"]),
            status=self._map_status(str(pi["status"])),
            provider=self.provider,
            amount_cents=pi.get("amount_received") or pi.get("amount"),
            reference=str(pi.get("latest_charge") or "") or None,
        )

    async def authorize(self, req: GatewayAuthorizeRequest) -> GatewayAuthorization:
        params: dict[str, Any] = {
            "amount": req.amount_cents,
            "currency": req.currency.lower(),
            "capture_method": "manual" if req.manual_capture else "automatic",
            "transfer_data": {"destination": req.destination_account},
            "application_fee_amount": req.application_fee_cents,
            "automatic_payment_methods": {"enabled": True},
            "metadata": {k: str(v) for k, v in (req.metadata or {}).items()},
        }
        if req.request_strong_authentication:
            params["payment_method_options"] = {"card": {"request_three_d_secure": "any"}}

        pi = await self._invoke(
            "authorize",
            lambda: stripe.PaymentIntent.create(**params, **self._options(req.idempotency_key)),
        )
        self._log("gateway_authorize", handle=pi["id"], status=pi["status"], amount_cents=req.amount_cents)
        return self._to_authorization(pi)

    async def capture(self, handle: str, amount_to_capture_cents: int,
                      idempotency_key: Optional[str] = None) -> GatewayStatus:
        pi = await self._invoke(
            "capture",
            lambda: stripe.PaymentIntent.capture(
                handle, amount_to_capture=amount_to_capture_cents, **self._options(idempotency_key)
            ),
        )
        self._log("gateway_capture", handle=handle, status=pi["status"], amount_cents=amount_to_capture_cents)
        return self._to_status(pi)

    async def cancel(self, handle: str, idempotency_key: Optional[str] = None) -> GatewayStatus:
        try:
            pi = await self._invoke(
                "cancel",
                lambda: stripe.PaymentIntent.cancel(handle, **self._options(idempotency_key)),
            )
        except GatewayRejectedException:
            # Cancelling an already-canceled intent is a no-op for us
            remote = await self.retrieve(handle)
            if not remote.is_canceled:
                raise
            logger.info("gateway_cancel_already_canceled", provider=self.provider, handle=handle)
            return GatewayStatus(handle=handle, status=remote.status, provider=self.provider)
        self._log("gateway_cancel", handle=handle, status=pi["status"])
        return self._to_status(pi)

    async def refund(self, handle: str, amount_cents: int,
                     idempotency_key: Optional[str] = None) -> GatewayStatus:
        refund = await self._invoke(
            "refund",
            lambda: stripe.Refund.create(
                payment_intent=handle,
                amount=amount_cents,
                reverse_transfer=True,
                **self._options(idempotency_key),
            ),
        )
        refund_status = str(refund.get("status") or "")
        if refund_status not in _REFUND_STATUS:
            raise GatewayRejectedException(
                f"refund ended in status {refund_status}", provider=self.provider, provider_code=refund_status,
            )
        self._log("gateway_refund", handle=handle, refund_id=refund["id"], amount_cents=amount_cents)
        return GatewayStatus(
            handle=handle,
            status=_REFUND_STATUS[refund_status],
            provider=self.provider,
            amount_cents=refund.get("amount"),
            reference=str(refund["id"]),
        )

    async def retrieve(self, handle: str) -> GatewayAuthorization:
        pi = await self._invoke(
            "retrieve",
            lambda: stripe.PaymentIntent.retrieve(handle, **self._options()),
        )
        return self._to_authorization(pi)
