from datetime import datetime, timezone

import pytest

from application.services.configuration_service import PaymentConfigurationService
from application.services.delivery_code_service import DeliveryCodeService
from domain.common.exceptions import CodeCollisionException, DomainValidationException, NotFoundException
from domain.configuration import ConfigurationEntry, ValueType

pytestmark = pytest.mark.asyncio


async def write_directly(uow_factory, key, value, value_type=ValueType.INTEGER):
    async with uow_factory() as uow:
        await uow.configurations.upsert(ConfigurationEntry(
            key=key, value=value, value_type=value_type, category="timing",
            updated_at=datetime.now(timezone.utc),
        ))


class TestConfiguration:
    async def test_defaults_apply_without_rows(self, services):
        assert await services.config.get_int("confirmation_deadline_hours") == 4
        assert await services.config.get_float("platform_fee_percentage") == 5.0
        assert await services.config.get_bool("enable_auto_capture") is True

    async def test_unknown_key_uses_caller_default_or_fails(self, services):
        assert await services.config.get("not_a_setting", default="x") == "x"
        with pytest.raises(NotFoundException):
            await services.config.get("not_a_setting")

    async def test_cached_value_survives_direct_write_until_invalidated(self, services, uow_factory, cache):
        assert await services.config.get_int("max_hold_days") == 7
        assert await cache.get("payment_config:max_hold_days") == {"__missing__": True}

        await write_directly(uow_factory, "max_hold_days", "5")
        assert await services.config.get_int("max_hold_days") == 7

        await services.config.invalidate("max_hold_days")
        assert await services.config.get_int("max_hold_days") == 5
        assert await cache.get("payment_config:max_hold_days") == {"value": 5}

    async def test_set_invalidates_cache(self, services):
        assert await services.config.get_int("late_cancellation_hours") == 24
        await services.config.set("late_cancellation_hours", 12)
        assert await services.config.get_int("late_cancellation_hours") == 12
        policy = await services.config.cancellation_policy()
        assert policy.late_cancellation_hours == 12

    async def test_invalidate_all(self, services, uow_factory):
        await services.config.get_int("max_hold_days")
        await services.config.get_int("max_capture_attempts")
        await write_directly(uow_factory, "max_hold_days", "3")
        await write_directly(uow_factory, "max_capture_attempts", "9")

        await services.config.invalidate()

        assert await services.config.get_int("max_hold_days") == 3
        assert await services.config.get_int("max_capture_attempts") == 9

    async def test_inactive_row_falls_back_to_default(self, services):
        await services.config.set("max_hold_days", 2, is_active=False)
        assert await services.config.get_int("max_hold_days") == 7

    async def test_set_validates_type(self, services):
        with pytest.raises(DomainValidationException):
            await services.config.set("max_hold_days", "seven")
        with pytest.raises(DomainValidationException):
            await services.config.set("brand_new_setting", "on")

    async def test_new_key_with_explicit_type(self, services):
        await services.config.set("brand_new_setting", {"a": 1}, value_type=ValueType.JSON, category="ops")
        assert await services.config.get("brand_new_setting") == {"a": 1}
        entry = await services.config.get_entry("brand_new_setting")
        assert entry["source"] == "stored"
        assert entry["category"] == "ops"

    async def test_list_all_merges_stored_over_defaults(self, services):
        await services.config.set("max_hold_days", 6)
        items = {item["key"]: item for item in await services.config.list_all()}
        assert items["max_hold_days"]["value"] == 6
        assert items["max_hold_days"]["source"] == "stored"
        assert items["confirmation_deadline_hours"]["source"] == "default"

        timing = await services.config.list_all(category="timing")
        assert {item["category"] for item in timing} == {"timing"}

    async def test_works_without_cache(self, uow_factory):
        config = PaymentConfigurationService(uow_factory)
        await config.set("max_hold_days", 4)
        assert await config.get_int("max_hold_days") == 4

    async def test_entry_for_unknown_key(self, services):
        with pytest.raises(NotFoundException):
            await services.config.get_entry("nope")


class TestDeliveryCodes:
    async def test_issue_is_idempotent_per_booking(self, services):
        first = await services.delivery_codes.issue(10)
        second = await services.delivery_codes.issue(10)
        assert first.code == second.code
        assert len(first.code) == 6

    async def test_verify_consumes_code(self, services):
        issued = await services.delivery_codes.issue(10)
        wrong = "000000" if issued.code != "000000" else "111111"

        assert await services.delivery_codes.verify(10, wrong) is False
        assert await services.delivery_codes.verify(10, issued.code) is True
        with pytest.raises(NotFoundException):
            await services.delivery_codes.verify(10, issued.code)

    async def test_new_code_after_use(self, services):
        issued = await services.delivery_codes.issue(10)
        await services.delivery_codes.verify(10, issued.code)
        assert (await services.delivery_codes.issue(10)).id != issued.id

    async def test_collision_draws_again(self, uow_factory, clock):
        draws = iter(["123456", "123456", "654321"])
        service = DeliveryCodeService(uow_factory, generator=lambda: next(draws), clock=clock)

        assert (await service.issue(1)).code == "123456"
        assert (await service.issue(2)).code == "654321"

    async def test_exhausted_draws_raise(self, uow_factory, clock):
        service = DeliveryCodeService(uow_factory, max_attempts=3, generator=lambda: "999999", clock=clock)
        await service.issue(1)
        with pytest.raises(CodeCollisionException):
            await service.issue(2)
