from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.config import Settings
from privacycore.core.result import Ok, Result, store_operation
from privacycore.domain.enums import BreachSeverity, BreachStatus, Regulation, parse_enum
from privacycore.domain.models import DataBreachRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BreachParams:
    breach_type: str
    severity: BreachSeverity | str
    discovered_at: datetime
    tenant_id: str | None = None
    regulation: Regulation | str | None = None
    occurred_at: datetime | None = None
    affected_data_categories: list[str] = field(default_factory=list)
    affected_subjects_count: int | None = None
    description: str | None = None
    impact_assessment: str | None = None
    containment_actions: str | None = None


@dataclass(frozen=True)
class BreachPage:
    breaches: list[DataBreachRecord]
    total: int


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BreachRegister:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._session_factory = session_factory
        self._settings = settings

    @store_operation("breach_report")
    async def report_data_breach(self, params: BreachParams) -> Result[str]:
        # The notification clock starts at discovery, not at occurrence.
        severity = parse_enum(BreachSeverity, params.severity)
        regulation = parse_enum(Regulation, params.regulation) if params.regulation else None
        discovered_at = _as_utc(params.discovered_at)
        record = DataBreachRecord(
            tenant_id=params.tenant_id,
            breach_type=params.breach_type,
            severity=severity.value,
            regulation=regulation.value if regulation else None,
            discovered_at=discovered_at,
            occurred_at=params.occurred_at,
            report_deadline=discovered_at + timedelta(hours=self._settings.breach_report_window_hours),
            affected_data_categories=list(params.affected_data_categories),
            affected_subjects_count=params.affected_subjects_count,
            description=params.description,
            impact_assessment=params.impact_assessment,
            containment_actions=params.containment_actions,
            status=BreachStatus.INVESTIGATING.value,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        logger.warning(
            "data_breach_reported breach_id=%s tenant_id=%s severity=%s report_deadline=%s",
            record.id,
            record.tenant_id,
            record.severity,
            record.report_deadline.isoformat(),
        )
        return Ok(record.id)

    @store_operation("breach_query")
    async def get_breaches(
        self,
        *,
        tenant_id: str | None = None,
        status: BreachStatus | str | None = None,
        severity: BreachSeverity | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Result[BreachPage]:
        conditions: list[Any] = []
        if tenant_id:
            conditions.append(DataBreachRecord.tenant_id == tenant_id)
        if status:
            conditions.append(DataBreachRecord.status == parse_enum(BreachStatus, status).value)
        if severity:
            conditions.append(DataBreachRecord.severity == parse_enum(BreachSeverity, severity).value)
        page_size = limit if limit and limit > 0 else self._settings.audit_default_page_size
        page_size = min(page_size, self._settings.audit_max_page_size)

        count_stmt = select(func.count()).select_from(DataBreachRecord)
        stmt = select(DataBreachRecord)
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
            stmt = stmt.where(and_(*conditions))
        stmt = (
            stmt.order_by(DataBreachRecord.discovered_at.desc(), DataBreachRecord.id.desc())
            .offset(max(0, offset))
            .limit(page_size)
        )
        async with self._session_factory() as session:
            total = int((await session.execute(count_stmt)).scalar_one() or 0)
            rows = (await session.execute(stmt)).scalars().all()
        return Ok(BreachPage(breaches=list(rows), total=total))

    @store_operation("breach_get")
    async def get_breach(self, breach_id: str) -> Result[DataBreachRecord | None]:
        async with self._session_factory() as session:
            return Ok(await session.get(DataBreachRecord, breach_id))
