"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Authorization engine (61xxx)
    INVALID_STATE = 61000
    UNAUTHORIZED_ACTOR = 61001
    GATEWAY_REJECTED = 61002
    GATEWAY_UNAVAILABLE = 61003
    LIMIT_EXCEEDED = 61004
    CONFLICT = 61005
    CODE_COLLISION = 61006


# Gateway status normalisation. Internal values drive the state machine:
#   capturable  -> funds reserved, capture allowed
#   requires_payer -> payer still has to act (card entry, 3DS)
#   captured / canceled / processing / failed
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "requires_payer",
        "requires_confirmation": "requires_payer",
        "requires_action": "requires_payer",
        "processing": "processing",
        "requires_capture": "capturable",
        "succeeded": "captured",
        "canceled": "canceled",
    },
}
