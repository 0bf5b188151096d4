"""
Runtime payment policy settings stored as typed key/value rows.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


class ValueType(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    JSON = "json"
    STRING = "string"


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def cast_value(raw: str, value_type: ValueType) -> Any:
    """Convert a stored string into its typed value."""
    value_type = ValueType(value_type)
    try:
        if value_type == ValueType.INTEGER:
            return int(raw)
        if value_type == ValueType.FLOAT:
            return float(raw)
        if value_type == ValueType.BOOLEAN:
            lowered = str(raw).strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
            raise ValueError(raw)
        if value_type == ValueType.JSON:
            return json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DomainValidationException(
            f"value {raw!r} is not a valid {value_type.value}", field="value"
        ) from exc
    return str(raw)


def serialize_value(value: Any, value_type: ValueType) -> str:
    """Inverse of cast_value; validates the value on the way in."""
    value_type = ValueType(value_type)
    if value_type == ValueType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        return "true" if cast_value(str(value), value_type) else "false"
    if value_type == ValueType.JSON:
        return json.dumps(value)
    if value_type == ValueType.INTEGER:
        if isinstance(value, bool):
            raise DomainValidationException("boolean is not a valid integer", field="value")
        return str(cast_value(str(value), value_type))
    if value_type == ValueType.FLOAT:
        return str(cast_value(str(value), value_type))
    return str(value)


@dataclass
class ConfigurationEntry:
    key: str
    value: str
    value_type: ValueType
    category: str = "general"
    description: Optional[str] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.value_type = ValueType(self.value_type)
        if not self.key:
            raise DomainValidationException("configuration key must not be empty", field="key")

    @property
    def typed_value(self) -> Any:
        return cast_value(self.value, self.value_type)


@dataclass(frozen=True)
class ConfigDefault:
    value: Any
    value_type: ValueType
    category: str
    description: str


DEFAULTS: dict[str, ConfigDefault] = {
    "confirmation_deadline_hours": ConfigDefault(4, ValueType.INTEGER, "timing", "Hours the sender has to confirm"),
    "auto_capture_hours_before_trip": ConfigDefault(
        72, ValueType.INTEGER, "timing", "Capture-expiry lead time before departure"
    ),
    "max_hold_days": ConfigDefault(7, ValueType.INTEGER, "timing", "Longest time funds stay authorized"),
    "auto_capture_safety_margin_hours": ConfigDefault(
        1, ValueType.INTEGER, "timing", "Auto-capture fires this long before the expiry deadline"
    ),
    "max_capture_attempts": ConfigDefault(3, ValueType.INTEGER, "capture", "Capture attempts before giving up"),
    "retry_backoff_base_minutes": ConfigDefault(5, ValueType.INTEGER, "capture", "Retry backoff base"),
    "retry_backoff_cap_minutes": ConfigDefault(60, ValueType.INTEGER, "capture", "Retry backoff cap"),
    "enable_auto_capture": ConfigDefault(True, ValueType.BOOLEAN, "capture", "Schedule automatic captures"),
    "capture_on_pickup_confirmation": ConfigDefault(
        True, ValueType.BOOLEAN, "capture", "Capture as soon as pickup is confirmed"
    ),
    "platform_fee_percentage": ConfigDefault(5.0, ValueType.FLOAT, "fees", "Platform commission percentage"),
    "minimum_platform_fee_cents": ConfigDefault(50, ValueType.INTEGER, "fees", "Minimum platform fee"),
    "gateway_fee_percentage": ConfigDefault(2.9, ValueType.FLOAT, "fees", "Processor percentage fee"),
    "gateway_fixed_fee_cents": ConfigDefault(30, ValueType.INTEGER, "fees", "Processor fixed fee"),
    "send_confirmation_reminders": ConfigDefault(
        True, ValueType.BOOLEAN, "notifications", "Remind senders before the confirmation deadline"
    ),
    "reminder_hours_before_expiry": ConfigDefault(
        2, ValueType.INTEGER, "notifications", "Confirmation reminder lead time"
    ),
    "payment_reminder_hours_before_capture": ConfigDefault(
        24, ValueType.INTEGER, "notifications", "Payment reminder lead time before auto-capture"
    ),
    "late_cancellation_hours": ConfigDefault(
        24, ValueType.INTEGER, "cancellation", "Below this many hours a cancellation is late"
    ),
    "late_cancellation_sender_percentage": ConfigDefault(
        50, ValueType.INTEGER, "cancellation", "Sender share of the net amount on a late cancellation"
    ),
    "no_show_compensation_percentage": ConfigDefault(
        50, ValueType.INTEGER, "cancellation", "Traveler share of the net amount on a no-show"
    ),
    "traveler_cancellation_limit": ConfigDefault(
        1, ValueType.INTEGER, "cancellation", "Cancellations with bookings allowed per window"
    ),
    "traveler_cancellation_window_days": ConfigDefault(
        30, ValueType.INTEGER, "cancellation", "Rolling window for the traveler limit"
    ),
    "traveler_cancellation_reliability_penalty": ConfigDefault(
        5, ValueType.INTEGER, "cancellation", "Reliability points lost per traveler cancellation"
    ),
    "require_3ds_for_large_amounts": ConfigDefault(
        True, ValueType.BOOLEAN, "security", "Request strong authentication above the threshold"
    ),
    "large_amount_threshold_cents": ConfigDefault(
        50000, ValueType.INTEGER, "security", "Strong authentication threshold"
    ),
}
