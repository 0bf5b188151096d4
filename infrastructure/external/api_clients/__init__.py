"""
API客户端模块

提供与外部协作服务（预订、通知）集成的REST客户端
"""
from .base import BaseAPIClient, APIResponse, APIError
from .booking_client import BookingHttpClient
from .notification_client import NotificationHttpClient

__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "BookingHttpClient",
    "NotificationHttpClient",
]
