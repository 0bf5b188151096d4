"""
Gateway DTOs (Pydantic v2) exchanged across the payment gateway port.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

# Currencies the marketplace settles in (extend as needed)
ISO_4217 = {
    "CAD", "USD", "EUR", "GBP", "AUD",
}

# Internal gateway statuses, see shared.codes.payment_codes.PROVIDER_STATUS_TO_INTERNAL
CAPTURABLE = "capturable"
CAPTURED = "captured"
CANCELED = "canceled"
REQUIRES_PAYER = "requires_payer"
PROCESSING = "processing"


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


class GatewayAuthorizeRequest(BaseModel):
    """Reserve funds with manual capture; money is not moved until capture."""

    amount_cents: int = Field(gt=0)
    currency: str = Field(default="CAD")
    destination_account: str
    application_fee_cents: int = Field(ge=0)
    manual_capture: bool = True
    request_strong_authentication: bool = False
    idempotency_key: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class GatewayAuthorization(BaseModel):
    handle: str
    status: str
    provider: str
    client_secret: Optional[str] = None
    amount_cents: Optional[int] = None
    amount_capturable_cents: Optional[int] = None
    amount_received_cents: Optional[int] = None
    provider_status: Optional[str] = None

    @property
    def is_capturable(self) -> bool:
        return self.status == CAPTURABLE

    @property
    def is_captured(self) -> bool:
        return self.status == CAPTURED

    @property
    def is_canceled(self) -> bool:
        return self.status == CANCELED


class GatewayStatus(BaseModel):
    handle: str
    status: str
    provider: str
    amount_cents: Optional[int] = None
    reference: Optional[str] = None
