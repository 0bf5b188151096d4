"""Per-task runtime for async services inside synchronous Celery workers.

Each task runs in its own ``asyncio.run`` loop, so the database engine and the
Redis client are created for that loop and disposed before it closes.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from redis import asyncio as aioredis

from core.config import settings
from infrastructure.cache import RedisCache
from infrastructure.container import PaymentServices, build_payment_services
from infrastructure.database import build_engine, build_session_factory
from infrastructure.unit_of_work import make_uow_factory

T = TypeVar("T")


async def _run(work: Callable[[PaymentServices], Awaitable[T]]) -> T:
    engine = build_engine(settings.database.url, echo=settings.database.echo)
    redis_client = None
    cache = None
    if settings.redis.url:
        redis_client = aioredis.from_url(settings.redis.url, encoding="utf-8", decode_responses=True)
        cache = RedisCache(redis_client, namespace=settings.redis.namespace)
    services = build_payment_services(
        uow_factory=make_uow_factory(build_session_factory(engine)),
        cache=cache,
    )
    try:
        return await work(services)
    finally:
        await services.aclose()
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()


def run_with_services(work: Callable[[PaymentServices], Awaitable[T]]) -> T:
    """Build the service graph, run ``work`` on it and tear everything down."""
    return asyncio.run(_run(work))
