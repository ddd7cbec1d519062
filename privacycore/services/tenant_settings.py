from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.errors import PolicyViolationError
from privacycore.core.result import Ok, Result, store_operation
from privacycore.domain.enums import Regulation, parse_enum
from privacycore.domain.models import ComplianceConfig, TenantComplianceSettings
from privacycore.services.compliance_catalog import REGULATION_CONFIGS, RegulationConfigDefinition


logger = logging.getLogger(__name__)

SETTINGS_MUTABLE_FIELDS = frozenset(
    {
        "primary_regulation",
        "additional_regulations",
        "dpo_name",
        "dpo_email",
        "data_residency_region",
        "breach_notification_email",
        "masking_enabled",
        "access_logging_enabled",
        "dsar_auto_acknowledge",
    }
)
_NON_NULLABLE_FIELDS = frozenset(
    {"primary_regulation", "additional_regulations", "masking_enabled", "access_logging_enabled", "dsar_auto_acknowledge"}
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TenantComplianceSettingsService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @store_operation("tenant_compliance_settings_get")
    async def get_tenant_compliance_settings(self, tenant_id: str) -> Result[TenantComplianceSettings | None]:
        async with self._session_factory() as session:
            return Ok(await session.get(TenantComplianceSettings, tenant_id))

    @store_operation("tenant_compliance_settings_update")
    async def update_tenant_compliance_settings(
        self, tenant_id: str, patch: Mapping[str, Any]
    ) -> Result[TenantComplianceSettings]:
        # Upsert: the first write creates the row with gdpr as the primary regulation.
        unknown = sorted(set(patch) - SETTINGS_MUTABLE_FIELDS)
        if unknown:
            raise PolicyViolationError(
                f"Unknown settings fields: {', '.join(unknown)}",
                details={"fields": unknown, "allowed": sorted(SETTINGS_MUTABLE_FIELDS)},
            )
        values = dict(patch)
        if values.get("primary_regulation") is not None:
            values["primary_regulation"] = parse_enum(Regulation, values["primary_regulation"]).value
        if values.get("additional_regulations") is not None:
            values["additional_regulations"] = [
                parse_enum(Regulation, item).value for item in values["additional_regulations"]
            ]
        async with self._session_factory() as session:
            async with session.begin():
                settings_row = (
                    await session.execute(
                        select(TenantComplianceSettings)
                        .where(TenantComplianceSettings.tenant_id == tenant_id)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if settings_row is None:
                    settings_row = TenantComplianceSettings(
                        tenant_id=tenant_id,
                        primary_regulation=Regulation.GDPR.value,
                        additional_regulations=[],
                        masking_enabled=True,
                        access_logging_enabled=True,
                        dsar_auto_acknowledge=False,
                    )
                    session.add(settings_row)
                for key, value in values.items():
                    if value is None and key in _NON_NULLABLE_FIELDS:
                        continue
                    setattr(settings_row, key, value)
                settings_row.updated_at = _utc_now()
        logger.info("tenant_compliance_settings_updated tenant_id=%s fields=%s", tenant_id, ",".join(sorted(values)))
        return Ok(settings_row)

    @store_operation("compliance_config_get")
    async def get_compliance_config(self, regulation: Regulation | str) -> Result[ComplianceConfig | None]:
        parsed = parse_enum(Regulation, regulation)
        async with self._session_factory() as session:
            config = (
                await session.execute(
                    select(ComplianceConfig).where(
                        ComplianceConfig.regulation == parsed.value,
                        ComplianceConfig.is_active.is_(True),
                    )
                )
            ).scalar_one_or_none()
        return Ok(config)

    @store_operation("compliance_configs_list")
    async def get_all_compliance_configs(self) -> Result[list[ComplianceConfig]]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(ComplianceConfig)
                    .where(ComplianceConfig.is_active.is_(True))
                    .order_by(ComplianceConfig.regulation)
                )
            ).scalars().all()
        return Ok(list(rows))

    @store_operation("compliance_configs_seed")
    async def seed_compliance_configs(
        self, catalog: tuple[RegulationConfigDefinition, ...] = REGULATION_CONFIGS
    ) -> Result[int]:
        # Inserts only regulations that are missing; existing rows are left as edited.
        async with self._session_factory() as session:
            async with session.begin():
                present = set((await session.execute(select(ComplianceConfig.regulation))).scalars().all())
                created = 0
                for definition in catalog:
                    if definition.regulation.value in present:
                        continue
                    session.add(
                        ComplianceConfig(
                            regulation=definition.regulation.value,
                            name=definition.name,
                            jurisdiction=definition.jurisdiction,
                            dsar_response_days=definition.dsar_response_days,
                            breach_notification_hours=definition.breach_notification_hours,
                            requires_dpo=definition.requires_dpo,
                            config_json={},
                            is_active=True,
                        )
                    )
                    created += 1
        logger.info("compliance_configs_seeded created=%s", created)
        return Ok(created)
