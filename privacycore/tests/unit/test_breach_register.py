from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from privacycore.services.breach import BreachParams


@pytest.mark.asyncio
async def test_report_sets_deadline_from_discovery(core) -> None:
    discovered = datetime(2026, 5, 4, 8, 30, tzinfo=timezone.utc)
    breach_id = (
        await core.breaches.report_data_breach(
            BreachParams(
                breach_type="unauthorized_access",
                severity="high",
                discovered_at=discovered,
                occurred_at=discovered - timedelta(days=3),
                tenant_id="t1",
                affected_data_categories=["pii"],
                affected_subjects_count=120,
            )
        )
    ).unwrap()

    breach = (await core.breaches.get_breach(breach_id)).unwrap()
    assert breach.status == "investigating"
    assert breach.report_deadline == discovered + timedelta(hours=72)
    assert breach.affected_subjects_count == 120


@pytest.mark.asyncio
async def test_naive_discovery_time_is_treated_as_utc(core) -> None:
    breach_id = (
        await core.breaches.report_data_breach(
            BreachParams(breach_type="lost_device", severity="low", discovered_at=datetime(2026, 1, 1, 0, 0))
        )
    ).unwrap()
    breach = (await core.breaches.get_breach(breach_id)).unwrap()
    assert breach.report_deadline == datetime(2026, 1, 4, 0, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_list_breaches_newest_discovery_first(core) -> None:
    base = datetime(2026, 2, 1, tzinfo=timezone.utc)
    for offset, severity in enumerate(("low", "critical", "medium")):
        await core.breaches.report_data_breach(
            BreachParams(
                breach_type="misdirected_email",
                severity=severity,
                discovered_at=base + timedelta(days=offset),
                tenant_id="t1",
            )
        )

    page = (await core.breaches.get_breaches(tenant_id="t1")).unwrap()
    assert page.total == 3
    assert [breach.severity for breach in page.breaches] == ["medium", "critical", "low"]

    critical = (await core.breaches.get_breaches(severity="critical")).unwrap()
    assert critical.total == 1
    assert (await core.breaches.get_breaches(tenant_id="t2")).unwrap().total == 0


@pytest.mark.asyncio
async def test_invalid_severity(core) -> None:
    result = await core.breaches.report_data_breach(
        BreachParams(breach_type="x", severity="catastrophic", discovered_at=datetime.now(timezone.utc))
    )
    assert not result.ok
    assert result.error.code == "INVALID_ENUM_VALUE"
