"""
Runtime payment configuration table.
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean
from datetime import datetime, timezone

from .base import Base


class PaymentConfigurationModel(Base):
    __tablename__ = "payment_configurations"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True, index=True, comment="Setting key")
    value = Column(Text, nullable=False, comment="Serialized value")
    value_type = Column(String(16), nullable=False, default="string", comment="integer/float/boolean/json/string")
    category = Column(String(50), nullable=False, default="general", index=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<PaymentConfigurationModel(key='{self.key}', value='{self.value}', type='{self.value_type}')>"
