from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from privacycore.domain.models import DsarActivityLog, DsarRequest


async def list_dsars(
    session: AsyncSession,
    *,
    tenant_id: str | None = None,
    status: str | None = None,
    subject_email: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[DsarRequest], int]:
    # Same filter shape as the access-log query: optional, AND-ed, paginated with total.
    conditions: list[Any] = []
    if tenant_id:
        conditions.append(DsarRequest.tenant_id == tenant_id)
    if status:
        conditions.append(DsarRequest.status == status)
    if subject_email:
        conditions.append(DsarRequest.subject_email == subject_email)
    if created_from:
        conditions.append(DsarRequest.created_at >= created_from)
    if created_to:
        conditions.append(DsarRequest.created_at <= created_to)

    count_stmt = select(func.count()).select_from(DsarRequest)
    stmt = select(DsarRequest)
    if conditions:
        count_stmt = count_stmt.where(and_(*conditions))
        stmt = stmt.where(and_(*conditions))
    total = int((await session.execute(count_stmt)).scalar_one() or 0)
    stmt = stmt.order_by(DsarRequest.created_at.desc(), DsarRequest.id.desc()).offset(offset).limit(limit)
    rows = (await session.execute(stmt)).scalars().all()
    return list(rows), total


async def next_activity_sequence(session: AsyncSession, dsar_id: str) -> int:
    current = (
        await session.execute(
            select(func.max(DsarActivityLog.sequence)).where(DsarActivityLog.dsar_id == dsar_id)
        )
    ).scalar_one_or_none()
    return int(current or 0) + 1


async def list_activity(session: AsyncSession, dsar_id: str) -> list[DsarActivityLog]:
    rows = (
        await session.execute(
            select(DsarActivityLog)
            .where(DsarActivityLog.dsar_id == dsar_id)
            .order_by(DsarActivityLog.sequence.desc())
        )
    ).scalars().all()
    return list(rows)
