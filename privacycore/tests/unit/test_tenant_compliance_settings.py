from __future__ import annotations

import pytest

from privacycore.services.compliance_catalog import REGULATION_CONFIGS


@pytest.mark.asyncio
async def test_first_update_creates_row_with_defaults(core) -> None:
    assert (await core.tenant_settings.get_tenant_compliance_settings("t1")).unwrap() is None

    created = (
        await core.tenant_settings.update_tenant_compliance_settings("t1", {"dpo_email": "dpo@example.com"})
    ).unwrap()
    assert created.primary_regulation == "gdpr"
    assert created.additional_regulations == []
    assert created.masking_enabled is True
    assert created.access_logging_enabled is True
    assert created.dsar_auto_acknowledge is False
    assert created.dpo_email == "dpo@example.com"


@pytest.mark.asyncio
async def test_update_merges_fields(core) -> None:
    await core.tenant_settings.update_tenant_compliance_settings("t1", {"dpo_name": "Grace"})
    updated = (
        await core.tenant_settings.update_tenant_compliance_settings(
            "t1",
            {"primary_regulation": "pdpa_sg", "additional_regulations": ["gdpr", "dpdp"], "masking_enabled": None},
        )
    ).unwrap()
    assert updated.primary_regulation == "pdpa_sg"
    assert updated.additional_regulations == ["gdpr", "dpdp"]
    assert updated.dpo_name == "Grace"
    assert updated.masking_enabled is True

    stored = (await core.tenant_settings.get_tenant_compliance_settings("t1")).unwrap()
    assert stored.additional_regulations == ["gdpr", "dpdp"]


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields_and_regulations(core) -> None:
    unknown = await core.tenant_settings.update_tenant_compliance_settings("t1", {"tenant_id": "t2"})
    assert unknown.error.code == "POLICY_VIOLATION"

    bad_regulation = await core.tenant_settings.update_tenant_compliance_settings(
        "t1", {"primary_regulation": "ccpa"}
    )
    assert bad_regulation.error.code == "INVALID_ENUM_VALUE"
    assert (await core.tenant_settings.get_tenant_compliance_settings("t1")).unwrap() is None


@pytest.mark.asyncio
async def test_seed_and_read_compliance_configs(core) -> None:
    assert (await core.tenant_settings.get_compliance_config("gdpr")).unwrap() is None

    created = (await core.tenant_settings.seed_compliance_configs()).unwrap()
    assert created == len(REGULATION_CONFIGS)
    assert (await core.tenant_settings.seed_compliance_configs()).unwrap() == 0

    configs = (await core.tenant_settings.get_all_compliance_configs()).unwrap()
    assert [config.regulation for config in configs] == sorted(config.regulation for config in configs)

    malaysia = (await core.tenant_settings.get_compliance_config("pdpa_my")).unwrap()
    assert malaysia.dsar_response_days == 21
    assert malaysia.breach_notification_hours == 72

    gdpr = (await core.tenant_settings.get_compliance_config("gdpr")).unwrap()
    assert gdpr.requires_dpo is True
