from __future__ import annotations

import re

import pytest

from privacycore.domain.enums import MaskingType
from privacycore.services.masking import (
    MaskingConfig,
    mask_aadhaar,
    mask_credit_card,
    mask_email,
    mask_pan,
    mask_phone,
    mask_value,
)


def test_mask_value_full_and_partial() -> None:
    assert mask_value("secret", MaskingConfig(type=MaskingType.FULL)) == "******"
    assert mask_value("secret", MaskingConfig(type=MaskingType.FULL, preserve_length=False)) == "********"
    assert mask_value("abcdefgh", MaskingConfig(type=MaskingType.PARTIAL)) == "ab****gh"
    assert mask_value("abcd", MaskingConfig(type=MaskingType.PARTIAL)) == "****"
    assert mask_value("abcdefgh", MaskingConfig(type=MaskingType.PARTIAL, pattern="[hidden]")) == "[hidden]"
    assert mask_value(None, MaskingConfig(type=MaskingType.FULL)) == ""


def test_mask_value_placeholders() -> None:
    assert mask_value("john.doe", MaskingConfig(type=MaskingType.HASH)) == "[HASH:john...]"
    assert mask_value("anything", MaskingConfig(type=MaskingType.REDACT)) == "[REDACTED]"
    token = mask_value("anything", MaskingConfig(type=MaskingType.TOKENIZE))
    assert re.fullmatch(r"\[TOKEN:[a-z0-9]{8}\]", token)


def test_specialized_maskers() -> None:
    assert mask_email("john.doe@example.com") == "j******e@example.com"
    assert mask_email("jo@example.com") == "**@example.com"
    assert mask_phone("+65 9123-4567") == "******4567"
    assert mask_pan("ABCDE1234F") == "AB****4F"
    assert mask_aadhaar("1234 5678 9012") == "XXXX-XXXX-9012"
    assert mask_aadhaar("12345") == "********"
    assert mask_credit_card("4111 1111 1111 1234") == "**** **** **** 1234"
    assert mask_email(None) == ""


@pytest.mark.asyncio
async def test_apply_masking_without_rules_returns_input(core) -> None:
    record = {"email": "john.doe@example.com", "name": "John"}
    result = await core.masking.apply_masking(record, "customer", "support", "t1")
    assert result.ok
    assert result.value is record


@pytest.mark.asyncio
async def test_apply_masking_uses_highest_priority_rule(core) -> None:
    await core.masking.create_rule(
        resource_type="customer",
        field_name="notes",
        masking_type=MaskingType.REDACT,
        priority=1,
    )
    await core.masking.create_rule(
        resource_type="customer",
        field_name="notes",
        masking_type=MaskingType.FULL,
        tenant_id="t1",
        role_name="support",
        priority=10,
        preserve_length=False,
    )
    await core.masking.create_rule(resource_type="customer", field_name="email", priority=5)

    record = {"notes": "vip caller", "email": "john.doe@example.com", "id": 7}
    result = await core.masking.apply_masking(record, "customer", "support", "t1")
    assert result.ok
    assert result.value == {"notes": "********", "email": "j******e@example.com", "id": 7}
    # The input record is never mutated.
    assert record["notes"] == "vip caller"

    other_role = await core.masking.apply_masking(record, "customer", "analyst", "t1")
    assert other_role.value["notes"] == "[REDACTED]"

    other_tenant = await core.masking.apply_masking(record, "customer", "support", "t2")
    assert other_tenant.value["notes"] == "[REDACTED]"


@pytest.mark.asyncio
async def test_apply_masking_skips_missing_and_null_fields(core) -> None:
    await core.masking.create_rule(resource_type="customer", field_name="phone")
    record = {"phone": None, "name": "Ada"}
    result = await core.masking.apply_masking(record, "customer", "support")
    assert result.value is record


@pytest.mark.asyncio
async def test_disabled_rules_are_ignored(core) -> None:
    created = await core.masking.create_rule(resource_type="customer", field_name="name", is_enabled=False)
    assert created.ok
    result = await core.masking.apply_masking({"name": "Ada Lovelace"}, "customer", "support")
    assert result.value == {"name": "Ada Lovelace"}


@pytest.mark.asyncio
async def test_apply_masking_many_passes_non_objects_through(core) -> None:
    await core.masking.create_rule(resource_type="customer", field_name="name", masking_type=MaskingType.REDACT)
    result = await core.masking.apply_masking_many(
        [{"name": "Ada"}, "plain", 3], "customer", "support"
    )
    assert result.ok
    assert result.value == [{"name": "[REDACTED]"}, "plain", 3]


@pytest.mark.asyncio
async def test_rule_cache_serves_stale_rules_until_ttl(core, clock) -> None:
    record = {"name": "Ada Lovelace"}
    first = await core.masking.apply_masking(record, "customer", "support", "t1")
    assert first.value == record
    assert len(core.masking.cache) == 1

    await core.masking.create_rule(
        resource_type="customer", field_name="name", masking_type=MaskingType.REDACT, tenant_id="t1"
    )
    cached = await core.masking.apply_masking(record, "customer", "support", "t1")
    assert cached.value == record

    clock.advance(core.settings.masking_cache_ttl_s + 1)
    refreshed = await core.masking.apply_masking(record, "customer", "support", "t1")
    assert refreshed.value == {"name": "[REDACTED]"}


@pytest.mark.asyncio
async def test_reload_resets_rule_cache(core) -> None:
    await core.masking.resolve_rules("t1", "support")
    assert len(core.masking.cache) == 1
    core.reload(core.settings)
    assert len(core.masking.cache) == 0


@pytest.mark.asyncio
async def test_set_rule_enabled_unknown_rule(core) -> None:
    result = await core.masking.set_rule_enabled("missing", False)
    assert not result.ok
    assert result.error.code == "NOT_FOUND"
