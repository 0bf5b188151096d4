"""Celery task infrastructure package.

Importing this module wires the configured Celery app; periodic payment
tasks are registered through ``infrastructure.tasks.tasks``.
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
