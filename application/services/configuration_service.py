"""
Runtime payment configuration provider.

Values are stored as typed rows, read through a TTL cache and fall back to
the built-in defaults table. Every write invalidates the cached entry, so a
change is visible to all workers without a restart.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from redis.exceptions import RedisError

from application.ports.cache import CachePort
from core.logging_config import get_logger
from domain.cancellation.policy import CancellationPolicy
from domain.common.exceptions import DomainValidationException, NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.configuration import DEFAULTS, ConfigurationEntry, ValueType, serialize_value

logger = get_logger(__name__)

CACHE_PREFIX = "payment_config:"
DEFAULT_CACHE_TTL = 3600

# Cached marker for "no active row, use the default"
_MISSING = {"__missing__": True}


class PaymentConfigurationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        cache: Optional[CachePort] = None,
        cache_ttl: int = DEFAULT_CACHE_TTL,
    ) -> None:
        self._uow_factory = uow_factory
        self._cache = cache
        self._cache_ttl = cache_ttl

    async def get(self, key: str, default: Any = None) -> Any:
        """Typed value for ``key``; stored row, else built-in default, else ``default``."""
        cached = await self._cache_get(key)
        if cached is not None:
            if cached == _MISSING:
                return self._fallback(key, default)
            return cached.get("value")

        async with self._uow_factory(readonly=True) as uow:
            entry = await uow.configurations.get(key)

        if entry is None or not entry.is_active:
            await self._cache_set(key, _MISSING)
            return self._fallback(key, default)

        value = entry.typed_value
        await self._cache_set(key, {"value": value})
        return value

    async def get_int(self, key: str) -> int:
        return int(await self.get(key))

    async def get_float(self, key: str) -> float:
        return float(await self.get(key))

    async def get_bool(self, key: str) -> bool:
        return bool(await self.get(key))

    async def set(
        self,
        key: str,
        value: Any,
        *,
        value_type: Optional[ValueType] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> ConfigurationEntry:
        default = DEFAULTS.get(key)
        resolved_type = ValueType(value_type) if value_type else (default.value_type if default else None)
        if resolved_type is None:
            raise DomainValidationException(f"value_type is required for unknown key {key}", field="value_type")

        entry = ConfigurationEntry(
            key=key,
            value=serialize_value(value, resolved_type),
            value_type=resolved_type,
            category=category or (default.category if default else "general"),
            description=description or (default.description if default else None),
            is_active=is_active,
            updated_at=datetime.now(timezone.utc),
        )
        async with self._uow_factory() as uow:
            saved = await uow.configurations.upsert(entry)

        await self.invalidate(key)
        logger.info("payment_config_updated", key=key, value_type=resolved_type.value, category=saved.category)
        return saved

    async def get_entry(self, key: str) -> dict[str, Any]:
        async with self._uow_factory(readonly=True) as uow:
            entry = await uow.configurations.get(key)
        if entry is not None:
            return self._describe(entry.key, entry.typed_value, entry.value_type, entry.category,
                                  entry.description, entry.is_active, source="stored")
        default = DEFAULTS.get(key)
        if default is None:
            raise NotFoundException("configuration", key)
        return self._describe(key, default.value, default.value_type, default.category,
                              default.description, True, source="default")

    async def list_all(self, category: Optional[str] = None) -> list[dict[str, Any]]:
        """Effective settings: stored rows override defaults, grouped by category on request."""
        async with self._uow_factory(readonly=True) as uow:
            stored = {e.key: e for e in await uow.configurations.list(category=category, active_only=False)}

        items: list[dict[str, Any]] = []
        for key, default in DEFAULTS.items():
            if category and default.category != category:
                continue
            entry = stored.pop(key, None)
            if entry is not None and entry.is_active:
                items.append(self._describe(key, entry.typed_value, entry.value_type, entry.category,
                                            entry.description, True, source="stored"))
            else:
                items.append(self._describe(key, default.value, default.value_type, default.category,
                                            default.description, True, source="default"))
        for entry in stored.values():
            items.append(self._describe(entry.key, entry.typed_value, entry.value_type, entry.category,
                                        entry.description, entry.is_active, source="stored"))
        return items

    async def invalidate(self, key: Optional[str] = None) -> None:
        if self._cache is None:
            return
        try:
            if key is None:
                await self._cache.delete_prefix(CACHE_PREFIX)
            else:
                await self._cache.delete(f"{CACHE_PREFIX}{key}")
        except RedisError as exc:
            logger.warning("payment_config_cache_invalidate_failed", key=key, error=str(exc))

    async def cancellation_policy(self) -> CancellationPolicy:
        return CancellationPolicy(
            late_cancellation_hours=await self.get_int("late_cancellation_hours"),
            late_cancellation_sender_percentage=await self.get_int("late_cancellation_sender_percentage"),
            no_show_compensation_percentage=await self.get_int("no_show_compensation_percentage"),
            gateway_fee_percentage=await self.get_float("gateway_fee_percentage"),
            gateway_fixed_fee_cents=await self.get_int("gateway_fixed_fee_cents"),
        )

    # ---- helpers ------------------------------------------------------

    @staticmethod
    def _fallback(key: str, default: Any) -> Any:
        builtin = DEFAULTS.get(key)
        if builtin is not None:
            return builtin.value
        if default is None:
            raise NotFoundException("configuration", key)
        return default

    async def _cache_get(self, key: str) -> Optional[dict]:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(f"{CACHE_PREFIX}{key}")
        except RedisError as exc:
            # Cache outage degrades to direct reads
            logger.warning("payment_config_cache_read_failed", key=key, error=str(exc))
            return None

    async def _cache_set(self, key: str, value: dict) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(f"{CACHE_PREFIX}{key}", value, ttl=self._cache_ttl)
        except RedisError as exc:
            logger.warning("payment_config_cache_write_failed", key=key, error=str(exc))

    @staticmethod
    def _describe(key, value, value_type, category, description, is_active, *, source) -> dict[str, Any]:
        return {
            "key": key,
            "value": value,
            "value_type": ValueType(value_type).value,
            "category": category,
            "description": description,
            "is_active": is_active,
            "source": source,
        }
