"""Delivery code exports."""
from .entity import DeliveryCode, DeliveryCodeStatus, generate_code, CODE_LENGTH
from .repository import DeliveryCodeRepository

__all__ = ["DeliveryCode", "DeliveryCodeStatus", "generate_code", "CODE_LENGTH", "DeliveryCodeRepository"]
