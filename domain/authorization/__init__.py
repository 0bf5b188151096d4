"""Payment authorization domain exports."""
from .entity import (
    PaymentAuthorization,
    AuthorizationStatus,
    CaptureReason,
    TERMINAL_STATUSES,
)
from .repository import AuthorizationRepository

__all__ = [
    "PaymentAuthorization",
    "AuthorizationStatus",
    "CaptureReason",
    "TERMINAL_STATUSES",
    "AuthorizationRepository",
]
