"""
DTOs exchanged between the application layer and the HTTP surface.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, model_serializer

from domain.configuration import ValueType


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class DTOBase(BaseModel):
    """Base DTO: unify datetime serialization to UTC-Z for all subclasses."""

    @model_serializer(mode="wrap")
    def _serialize_model(self, handler):  # type: ignore[override]
        data = handler(self)

        def convert(value):
            if isinstance(value, datetime):
                ts = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
                return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
            if isinstance(value, list):
                return [convert(v) for v in value]
            if isinstance(value, dict):
                return {k: convert(v) for k, v in value.items()}
            return value

        return convert(data)


class CreateAuthorizationDTO(DTOBase):
    booking_id: int = Field(..., gt=0, description="Accepted booking to reserve funds for")


class CancelAuthorizationDTO(DTOBase):
    reason: Optional[str] = Field(None, max_length=500)


class CaptureAuthorizationDTO(DTOBase):
    reason: Optional[str] = Field(None, max_length=500, description="Operator note for admin captures")


class AttachDestinationDTO(DTOBase):
    destination_account: str = Field(..., min_length=3, max_length=255)


class CancellationRequestDTO(DTOBase):
    reason: Optional[str] = Field(None, max_length=500)


class AuthorizationResponseDTO(DTOBase):
    id: int
    booking_id: int
    payer_id: int
    payee_id: int
    amount_cents: int
    currency: str
    platform_fee_cents: int
    status: str
    gateway_handle: Optional[str] = None
    confirmation_deadline: datetime
    expires_at: Optional[datetime] = None
    auto_capture_at: Optional[datetime] = None
    capture_reason: Optional[str] = None
    capture_attempts: int = 0
    last_error: Optional[str] = None
    cancellation_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def from_entity(cls, authorization: Any) -> "AuthorizationResponseDTO":
        data = {name: getattr(authorization, name, None) for name in cls.model_fields}
        data["status"] = _enum_value(authorization.status)
        data["capture_reason"] = _enum_value(authorization.capture_reason)
        return cls(**data)


class CaptureResponseDTO(DTOBase):
    authorization: AuthorizationResponseDTO
    already_captured: bool = False
    transaction_id: Optional[int] = None


class EventLogDTO(DTOBase):
    id: Optional[int] = None
    event_type: str
    authorization_id: Optional[int] = None
    booking_id: Optional[int] = None
    user_id: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    requires_attention: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, entry: Any) -> "EventLogDTO":
        data = {name: getattr(entry, name, None) for name in cls.model_fields}
        data["event_type"] = _enum_value(entry.event_type)
        data["payload"] = dict(entry.payload or {})
        return cls(**data)


class ConfigurationUpdateDTO(DTOBase):
    value: Any
    value_type: Optional[ValueType] = None
    category: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True


class DeliveryCodeDTO(DTOBase):
    booking_id: int
    code: str
    status: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, code: Any) -> "DeliveryCodeDTO":
        return cls(booking_id=code.booking_id, code=code.code,
                   status=_enum_value(code.status), created_at=code.created_at)


class VerifyDeliveryCodeDTO(DTOBase):
    code: str = Field(..., min_length=4, max_length=12)
