"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Process-level knobs only (gateway credentials, timeouts, batch sizes). Policy
values that operators change at runtime live in PaymentConfigurationService.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    api_version: Optional[str] = None


class SchedulerSettings(BaseModel):
    batch_size: int = 50
    tick_seconds: int = 60
    stuck_job_minutes: int = 30
    overdue_minutes: int = 5
    maintenance_minutes: int = 10


class ReconciliationSettings(BaseModel):
    batch_size: int = 100
    min_age_minutes: int = 10
    lookback_hours: int = 48
    interval_minutes: int = 15


class NotificationSettings(BaseModel):
    batch_size: int = 100
    max_attempts: int = 5


class PaymentSettings(BaseSettings):
    default_provider: str = "stripe"
    currency: str = "CAD"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
