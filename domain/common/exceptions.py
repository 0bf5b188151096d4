"""Business exceptions shared by the domain and infrastructure layers.

The core layer only maps these to HTTP responses; the domain never imports core.
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """Base class for every business error"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidStateException(BusinessException):
    """Operation is not legal from the aggregate's current status."""

    def __init__(self, message: str, *, current_status: Optional[str] = None, details: Optional[dict] = None):
        full_details = {"current_status": current_status} if current_status else {}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.INVALID_STATE,
            message=message,
            error_type="InvalidState",
            details=full_details or None,
            field="status",
        )


class UnauthorizedActorException(BusinessException):
    """Actor lacks the required relation to the booking."""

    def __init__(self, actor_id: Optional[int] = None, *, required: str = "payer"):
        super().__init__(
            code=PaymentCode.UNAUTHORIZED_ACTOR,
            message=f"Actor is not the {required} of this booking",
            error_type="Unauthorized",
            details={"actor_id": actor_id, "required": required},
        )


class GatewayRejectedException(BusinessException):
    """Processor declined the request; never retried automatically."""

    def __init__(self, message: str, *, provider: str = "", provider_code: Optional[str] = None):
        super().__init__(
            code=PaymentCode.GATEWAY_REJECTED,
            message=message,
            error_type="GatewayRejected",
            details={"provider": provider, "provider_code": provider_code},
        )


class GatewayUnavailableException(BusinessException):
    """Network failure, timeout or throttling at the processor; safe to retry."""

    def __init__(self, message: str, *, provider: str = "", provider_code: Optional[str] = None):
        super().__init__(
            code=PaymentCode.GATEWAY_UNAVAILABLE,
            message=message,
            error_type="GatewayUnavailable",
            details={"provider": provider, "provider_code": provider_code},
        )


class LimitExceededException(BusinessException):
    def __init__(self, message: str, *, limit: int, window_days: int, next_allowed_at: Optional[str] = None):
        super().__init__(
            code=PaymentCode.LIMIT_EXCEEDED,
            message=message,
            error_type="LimitExceeded",
            details={"limit": limit, "window_days": window_days, "next_allowed_at": next_allowed_at},
        )


class ConflictException(BusinessException):
    """A concurrent writer won the race."""

    def __init__(self, message: str, *, resource: str, resource_id: Optional[int | str] = None):
        super().__init__(
            code=PaymentCode.CONFLICT,
            message=message,
            error_type="Conflict",
            details={"resource": resource, "id": resource_id},
        )


class NotFoundException(BusinessException):
    def __init__(self, resource: str, identifier: Optional[int | str] = None):
        details = {"resource": resource}
        if identifier is not None:
            details["id"] = identifier
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{resource} not found",
            error_type="NotFound",
            details=details,
        )


class CodeCollisionException(BusinessException):
    def __init__(self, attempts: int):
        super().__init__(
            code=PaymentCode.CODE_COLLISION,
            message=f"Could not generate a unique code after {attempts} attempts",
            error_type="CodeCollision",
            details={"attempts": attempts},
        )
