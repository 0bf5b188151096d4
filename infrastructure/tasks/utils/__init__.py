"""Utility helpers for Celery tasks."""
from .base_task import BaseTask
from .runtime import run_with_services

__all__ = ["BaseTask", "run_with_services"]
