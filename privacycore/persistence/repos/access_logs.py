from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from privacycore.domain.models import SensitiveDataAccessLog


def _conditions(
    *,
    tenant_id: str | None = None,
    accessor_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    data_category: str | None = None,
    risk_level: str | None = None,
    flagged: bool | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> list[Any]:
    # Every filter is optional and independent; present ones are AND-ed.
    conditions: list[Any] = []
    if tenant_id:
        conditions.append(SensitiveDataAccessLog.tenant_id == tenant_id)
    if accessor_id:
        conditions.append(SensitiveDataAccessLog.accessor_id == accessor_id)
    if resource_type:
        conditions.append(SensitiveDataAccessLog.resource_type == resource_type)
    if resource_id:
        conditions.append(SensitiveDataAccessLog.resource_id == resource_id)
    if data_category:
        conditions.append(SensitiveDataAccessLog.data_category == data_category)
    if risk_level:
        conditions.append(SensitiveDataAccessLog.risk_level == risk_level)
    if flagged is not None:
        conditions.append(SensitiveDataAccessLog.flagged.is_(flagged))
    if created_from:
        conditions.append(SensitiveDataAccessLog.created_at >= created_from)
    if created_to:
        conditions.append(SensitiveDataAccessLog.created_at <= created_to)
    return conditions


async def list_access_logs(
    session: AsyncSession,
    *,
    offset: int = 0,
    limit: int = 50,
    **filters: Any,
) -> tuple[list[SensitiveDataAccessLog], int]:
    conditions = _conditions(**filters)
    where = and_(*conditions) if conditions else None

    count_stmt = select(func.count()).select_from(SensitiveDataAccessLog)
    stmt = select(SensitiveDataAccessLog)
    if where is not None:
        count_stmt = count_stmt.where(where)
        stmt = stmt.where(where)
    total = int((await session.execute(count_stmt)).scalar_one() or 0)

    stmt = stmt.order_by(SensitiveDataAccessLog.created_at.desc(), SensitiveDataAccessLog.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    rows = (await session.execute(stmt)).scalars().all()
    return list(rows), total


async def count_accesses_since(
    session: AsyncSession,
    *,
    accessor_id: str,
    since: datetime,
    tenant_id: str | None = None,
    data_category: str | None = None,
) -> int:
    # Trailing-window counter backing the unusual-access heuristic.
    conditions = _conditions(
        tenant_id=tenant_id,
        accessor_id=accessor_id,
        data_category=data_category,
        created_from=since,
    )
    stmt = select(func.count()).select_from(SensitiveDataAccessLog).where(and_(*conditions))
    return int((await session.execute(stmt)).scalar_one() or 0)
