from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Mapping

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.errors import NotFoundError, PackAlreadyAssignedError, PolicyViolationError
from privacycore.core.result import Err, Ok, Result, store_operation
from privacycore.domain.enums import (
    ItemPriority,
    PackAssignmentStatus,
    ProgressStatus,
    Regulation,
    parse_enum,
)
from privacycore.domain.models import (
    ComplianceChecklistItem,
    CompliancePack,
    TenantCompliancePack,
    TenantComplianceProgress,
)
from privacycore.services.compliance_catalog import DEFAULT_PACKS, PackDefinition


logger = logging.getLogger(__name__)

# Statuses that count towards completion.
DONE_STATUSES = frozenset({ProgressStatus.COMPLETED.value, ProgressStatus.NOT_APPLICABLE.value})

PACK_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "regulation",
        "applicable_countries",
        "applicable_business_types",
        "version",
        "is_active",
        "is_default",
    }
)
ITEM_MUTABLE_FIELDS = frozenset(
    {
        "category",
        "title",
        "description",
        "guidance",
        "priority",
        "is_mandatory",
        "evidence_required",
        "evidence_types",
        "due_days",
        "sort_order",
    }
)
PROGRESS_MUTABLE_FIELDS = frozenset(
    {"status", "notes", "evidence_url", "evidence_description", "assigned_to"}
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def completion_percentage(done: int, total: int) -> int:
    # Round half up on integers so 1/8 reports 13, matching a display rounding.
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


def _pack_applies(pack: CompliancePack, country: str | None, business_type: str | None) -> bool:
    # Empty applicability lists apply everywhere.
    if country and pack.applicable_countries and country not in pack.applicable_countries:
        return False
    if business_type and pack.applicable_business_types and business_type not in pack.applicable_business_types:
        return False
    return True


def _checked_changes(changes: Mapping[str, Any], allowed: frozenset[str], entity: str) -> dict[str, Any]:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise PolicyViolationError(
            f"Unknown {entity} fields: {', '.join(unknown)}",
            details={"fields": unknown, "allowed": sorted(allowed)},
        )
    return dict(changes)


@dataclass(frozen=True)
class PackParams:
    code: str
    name: str
    regulation: Regulation | str
    description: str | None = None
    applicable_countries: list[str] = field(default_factory=list)
    applicable_business_types: list[str] = field(default_factory=list)
    version: str = "1.0"
    is_active: bool = True
    is_default: bool = False


@dataclass(frozen=True)
class ChecklistItemParams:
    category: str
    title: str
    description: str | None = None
    guidance: str | None = None
    priority: ItemPriority | str = ItemPriority.MEDIUM
    is_mandatory: bool = True
    evidence_required: bool = False
    evidence_types: list[str] = field(default_factory=list)
    due_days: int | None = None
    sort_order: int = 0


@dataclass(frozen=True)
class TenantPackView:
    assignment: TenantCompliancePack
    pack: CompliancePack


@dataclass(frozen=True)
class ProgressView:
    progress: TenantComplianceProgress
    item: ComplianceChecklistItem


@dataclass(frozen=True)
class ComplianceSummary:
    total_packs: int
    completed_packs: int
    total_items: int
    completed_items: int
    in_progress_items: int
    overdue_items: int
    overall_percentage: int


async def _recompute_rollup(session: AsyncSession, tenant_id: str, pack_id: str) -> TenantCompliancePack | None:
    # Caller owns the transaction; the assignment row is locked before counting.
    assignment = (
        await session.execute(
            select(TenantCompliancePack)
            .where(TenantCompliancePack.tenant_id == tenant_id, TenantCompliancePack.pack_id == pack_id)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if assignment is None:
        return None
    total, done = (
        await session.execute(
            select(
                func.count(TenantComplianceProgress.id),
                func.coalesce(
                    func.sum(case((TenantComplianceProgress.status.in_(DONE_STATUSES), 1), else_=0)),
                    0,
                ),
            ).where(
                TenantComplianceProgress.tenant_id == tenant_id,
                TenantComplianceProgress.pack_id == pack_id,
            )
        )
    ).one()
    percentage = completion_percentage(int(done or 0), int(total or 0))
    now = _utc_now()
    assignment.completion_percentage = percentage
    if percentage == 100:
        if assignment.status != PackAssignmentStatus.COMPLETED.value:
            assignment.completed_at = now
        assignment.status = PackAssignmentStatus.COMPLETED.value
    else:
        assignment.status = PackAssignmentStatus.ACTIVE.value
        assignment.completed_at = None
    assignment.updated_at = now
    return assignment


class ComplianceProgramTracker:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # Packs

    @store_operation("compliance_packs_available")
    async def get_available_packs(
        self,
        regulation: Regulation | str | None = None,
        country: str | None = None,
        business_type: str | None = None,
    ) -> Result[list[CompliancePack]]:
        stmt = select(CompliancePack).where(CompliancePack.is_active.is_(True))
        if regulation:
            stmt = stmt.where(CompliancePack.regulation == parse_enum(Regulation, regulation).value)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt.order_by(CompliancePack.name))).scalars().all()
        # JSON list membership is filtered here to stay portable across backends.
        return Ok([pack for pack in rows if _pack_applies(pack, country, business_type)])

    @store_operation("compliance_pack_get")
    async def get_pack(self, pack_id: str) -> Result[CompliancePack | None]:
        async with self._session_factory() as session:
            return Ok(await session.get(CompliancePack, pack_id))

    @store_operation("compliance_pack_create")
    async def create_pack(self, params: PackParams) -> Result[CompliancePack]:
        pack = CompliancePack(
            code=params.code,
            name=params.name,
            description=params.description,
            regulation=parse_enum(Regulation, params.regulation).value,
            applicable_countries=list(params.applicable_countries),
            applicable_business_types=list(params.applicable_business_types),
            version=params.version,
            is_active=params.is_active,
            is_default=params.is_default,
            total_items=0,
        )
        async with self._session_factory() as session:
            session.add(pack)
            await session.commit()
        logger.info("compliance_pack_created pack_id=%s code=%s", pack.id, pack.code)
        return Ok(pack)

    @store_operation("compliance_pack_update")
    async def update_pack(self, pack_id: str, changes: Mapping[str, Any]) -> Result[CompliancePack]:
        values = _checked_changes(changes, PACK_MUTABLE_FIELDS, "pack")
        if values.get("regulation") is not None:
            values["regulation"] = parse_enum(Regulation, values["regulation"]).value
        async with self._session_factory() as session:
            pack = await session.get(CompliancePack, pack_id)
            if pack is None:
                return Err(NotFoundError("Compliance pack not found", details={"pack_id": pack_id}))
            for key, value in values.items():
                setattr(pack, key, value)
            pack.updated_at = _utc_now()
            await session.commit()
        return Ok(pack)

    @store_operation("compliance_pack_delete")
    async def delete_pack(self, pack_id: str) -> Result[bool]:
        # Removes the template together with its items, assignments and progress rows.
        async with self._session_factory() as session:
            async with session.begin():
                pack = await session.get(CompliancePack, pack_id)
                if pack is None:
                    return Err(NotFoundError("Compliance pack not found", details={"pack_id": pack_id}))
                await session.execute(
                    delete(TenantComplianceProgress).where(TenantComplianceProgress.pack_id == pack_id)
                )
                await session.execute(delete(TenantCompliancePack).where(TenantCompliancePack.pack_id == pack_id))
                await session.execute(
                    delete(ComplianceChecklistItem).where(ComplianceChecklistItem.pack_id == pack_id)
                )
                await session.delete(pack)
        logger.info("compliance_pack_deleted pack_id=%s", pack_id)
        return Ok(True)

    # Checklist items

    @store_operation("compliance_items_list")
    async def get_checklist_items(self, pack_id: str) -> Result[list[ComplianceChecklistItem]]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(ComplianceChecklistItem)
                    .where(ComplianceChecklistItem.pack_id == pack_id)
                    .order_by(ComplianceChecklistItem.sort_order, ComplianceChecklistItem.created_at)
                )
            ).scalars().all()
        return Ok(list(rows))

    @store_operation("compliance_item_create")
    async def create_checklist_item(
        self, pack_id: str, params: ChecklistItemParams
    ) -> Result[ComplianceChecklistItem]:
        priority = parse_enum(ItemPriority, params.priority)
        async with self._session_factory() as session:
            async with session.begin():
                if await session.get(CompliancePack, pack_id) is None:
                    return Err(NotFoundError("Compliance pack not found", details={"pack_id": pack_id}))
                item = ComplianceChecklistItem(
                    pack_id=pack_id,
                    category=params.category,
                    title=params.title,
                    description=params.description,
                    guidance=params.guidance,
                    priority=priority.value,
                    is_mandatory=params.is_mandatory,
                    evidence_required=params.evidence_required,
                    evidence_types=list(params.evidence_types),
                    due_days=params.due_days,
                    sort_order=params.sort_order,
                )
                session.add(item)
                await session.execute(
                    update(CompliancePack)
                    .where(CompliancePack.id == pack_id)
                    .values(total_items=CompliancePack.total_items + 1)
                    .execution_options(synchronize_session=False)
                )
        return Ok(item)

    @store_operation("compliance_item_update")
    async def update_checklist_item(
        self, item_id: str, changes: Mapping[str, Any]
    ) -> Result[ComplianceChecklistItem]:
        values = _checked_changes(changes, ITEM_MUTABLE_FIELDS, "checklist item")
        if values.get("priority") is not None:
            values["priority"] = parse_enum(ItemPriority, values["priority"]).value
        async with self._session_factory() as session:
            item = await session.get(ComplianceChecklistItem, item_id)
            if item is None:
                return Err(NotFoundError("Checklist item not found", details={"item_id": item_id}))
            for key, value in values.items():
                setattr(item, key, value)
            item.updated_at = _utc_now()
            await session.commit()
        return Ok(item)

    @store_operation("compliance_item_delete")
    async def delete_checklist_item(self, item_id: str) -> Result[bool]:
        async with self._session_factory() as session:
            async with session.begin():
                item = await session.get(ComplianceChecklistItem, item_id)
                if item is None:
                    return Err(NotFoundError("Checklist item not found", details={"item_id": item_id}))
                pack_id = item.pack_id
                affected_tenants = (
                    await session.execute(
                        select(TenantComplianceProgress.tenant_id)
                        .where(TenantComplianceProgress.item_id == item_id)
                        .distinct()
                    )
                ).scalars().all()
                await session.execute(
                    delete(TenantComplianceProgress).where(TenantComplianceProgress.item_id == item_id)
                )
                await session.delete(item)
                await session.execute(
                    update(CompliancePack)
                    .where(CompliancePack.id == pack_id)
                    .values(
                        total_items=case(
                            (CompliancePack.total_items > 0, CompliancePack.total_items - 1),
                            else_=0,
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.flush()
                # Removing a progress row changes the denominator of every affected roll-up.
                for tenant_id in affected_tenants:
                    await _recompute_rollup(session, tenant_id, pack_id)
        return Ok(True)

    # Tenant assignment

    @store_operation("compliance_pack_assign")
    async def assign_pack_to_tenant(
        self,
        tenant_id: str,
        pack_id: str,
        assigned_by: str,
        due_date: datetime | None = None,
    ) -> Result[TenantCompliancePack]:
        """Assign a pack and snapshot one ``not_started`` progress row per current item.

        Items added to the pack later do not create progress rows for existing
        assignments.
        """
        conflict = PackAlreadyAssignedError(
            "Compliance pack is already assigned to this tenant",
            details={"tenant_id": tenant_id, "pack_id": pack_id},
        )
        now = _utc_now()
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if await session.get(CompliancePack, pack_id) is None:
                        return Err(NotFoundError("Compliance pack not found", details={"pack_id": pack_id}))
                    existing = (
                        await session.execute(
                            select(TenantCompliancePack.id).where(
                                TenantCompliancePack.tenant_id == tenant_id,
                                TenantCompliancePack.pack_id == pack_id,
                            )
                        )
                    ).scalar_one_or_none()
                    if existing is not None:
                        return Err(conflict)
                    assignment = TenantCompliancePack(
                        tenant_id=tenant_id,
                        pack_id=pack_id,
                        assigned_by=assigned_by,
                        assigned_at=now,
                        due_date=due_date,
                        status=PackAssignmentStatus.ACTIVE.value,
                        completion_percentage=0,
                    )
                    session.add(assignment)
                    items = (
                        await session.execute(
                            select(ComplianceChecklistItem).where(ComplianceChecklistItem.pack_id == pack_id)
                        )
                    ).scalars().all()
                    for item in items:
                        item_due = None
                        if due_date is not None and item.due_days is not None:
                            item_due = due_date - timedelta(days=item.due_days)
                        session.add(
                            TenantComplianceProgress(
                                tenant_id=tenant_id,
                                pack_id=pack_id,
                                item_id=item.id,
                                status=ProgressStatus.NOT_STARTED.value,
                                due_date=item_due,
                            )
                        )
        except IntegrityError:
            # A concurrent assignment of the same pair won the unique constraint.
            return Err(conflict)
        logger.info(
            "compliance_pack_assigned tenant_id=%s pack_id=%s items=%s assigned_by=%s",
            tenant_id,
            pack_id,
            len(items),
            assigned_by,
        )
        return Ok(assignment)

    @store_operation("compliance_pack_unassign")
    async def unassign_pack_from_tenant(self, tenant_id: str, pack_id: str) -> Result[bool]:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(TenantCompliancePack).where(
                        TenantCompliancePack.tenant_id == tenant_id,
                        TenantCompliancePack.pack_id == pack_id,
                    )
                )
                if not result.rowcount:
                    return Err(
                        NotFoundError(
                            "Compliance pack is not assigned to this tenant",
                            details={"tenant_id": tenant_id, "pack_id": pack_id},
                        )
                    )
                await session.execute(
                    delete(TenantComplianceProgress).where(
                        TenantComplianceProgress.tenant_id == tenant_id,
                        TenantComplianceProgress.pack_id == pack_id,
                    )
                )
        logger.info("compliance_pack_unassigned tenant_id=%s pack_id=%s", tenant_id, pack_id)
        return Ok(True)

    @store_operation("compliance_tenant_packs")
    async def get_tenant_packs(self, tenant_id: str) -> Result[list[TenantPackView]]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(TenantCompliancePack, CompliancePack)
                    .join(CompliancePack, CompliancePack.id == TenantCompliancePack.pack_id)
                    .where(TenantCompliancePack.tenant_id == tenant_id)
                    .order_by(TenantCompliancePack.assigned_at.desc())
                )
            ).all()
        return Ok([TenantPackView(assignment=assignment, pack=pack) for assignment, pack in rows])

    @store_operation("compliance_tenant_progress")
    async def get_tenant_progress(self, tenant_id: str, pack_id: str) -> Result[list[ProgressView]]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(TenantComplianceProgress, ComplianceChecklistItem)
                    .join(ComplianceChecklistItem, ComplianceChecklistItem.id == TenantComplianceProgress.item_id)
                    .where(
                        TenantComplianceProgress.tenant_id == tenant_id,
                        TenantComplianceProgress.pack_id == pack_id,
                    )
                    .order_by(ComplianceChecklistItem.sort_order, ComplianceChecklistItem.created_at)
                )
            ).all()
        return Ok([ProgressView(progress=progress, item=item) for progress, item in rows])

    # Progress and roll-up

    @store_operation("compliance_progress_update")
    async def update_item_progress(
        self,
        tenant_id: str,
        pack_id: str,
        item_id: str,
        patch: Mapping[str, Any],
        user_id: str,
    ) -> Result[TenantComplianceProgress]:
        """Apply a progress patch and recompute the pack roll-up in the same transaction."""
        values = _checked_changes(patch, PROGRESS_MUTABLE_FIELDS, "progress")
        if values.get("status") is not None:
            values["status"] = parse_enum(ProgressStatus, values["status"]).value
        async with self._session_factory() as session:
            async with session.begin():
                # Lock order: assignment row first, then the progress row.
                assignment = (
                    await session.execute(
                        select(TenantCompliancePack)
                        .where(
                            TenantCompliancePack.tenant_id == tenant_id,
                            TenantCompliancePack.pack_id == pack_id,
                        )
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                progress = (
                    await session.execute(
                        select(TenantComplianceProgress).where(
                            TenantComplianceProgress.tenant_id == tenant_id,
                            TenantComplianceProgress.pack_id == pack_id,
                            TenantComplianceProgress.item_id == item_id,
                        )
                    )
                ).scalar_one_or_none()
                if assignment is None or progress is None:
                    return Err(
                        NotFoundError(
                            "Compliance progress not found",
                            details={"tenant_id": tenant_id, "pack_id": pack_id, "item_id": item_id},
                        )
                    )
                now = _utc_now()
                previous_status = progress.status
                new_status = values.get("status") or previous_status
                if new_status != previous_status:
                    if new_status == ProgressStatus.IN_PROGRESS.value:
                        progress.started_at = now
                    elif new_status == ProgressStatus.COMPLETED.value:
                        progress.completed_at = now
                        progress.completed_by = user_id
                for key, value in values.items():
                    if key == "status" and value is None:
                        continue
                    setattr(progress, key, value)
                progress.updated_at = now
                await session.flush()
                rollup = await _recompute_rollup(session, tenant_id, pack_id)
        logger.info(
            "compliance_progress_updated tenant_id=%s pack_id=%s item_id=%s status=%s completion=%s",
            tenant_id,
            pack_id,
            item_id,
            progress.status,
            rollup.completion_percentage if rollup else None,
        )
        return Ok(progress)

    @store_operation("compliance_rollup")
    async def update_pack_completion_percentage(self, tenant_id: str, pack_id: str) -> Result[int]:
        async with self._session_factory() as session:
            async with session.begin():
                assignment = await _recompute_rollup(session, tenant_id, pack_id)
                if assignment is None:
                    return Err(
                        NotFoundError(
                            "Compliance pack is not assigned to this tenant",
                            details={"tenant_id": tenant_id, "pack_id": pack_id},
                        )
                    )
                percentage = assignment.completion_percentage
        return Ok(percentage)

    @store_operation("compliance_summary")
    async def get_compliance_summary(self, tenant_id: str) -> Result[ComplianceSummary]:
        async with self._session_factory() as session:
            statuses = (
                await session.execute(
                    select(TenantCompliancePack.status).where(TenantCompliancePack.tenant_id == tenant_id)
                )
            ).scalars().all()
            item_counts = dict(
                (
                    await session.execute(
                        select(TenantComplianceProgress.status, func.count(TenantComplianceProgress.id))
                        .join(
                            TenantCompliancePack,
                            (TenantCompliancePack.tenant_id == TenantComplianceProgress.tenant_id)
                            & (TenantCompliancePack.pack_id == TenantComplianceProgress.pack_id),
                        )
                        .where(TenantComplianceProgress.tenant_id == tenant_id)
                        .group_by(TenantComplianceProgress.status)
                    )
                ).all()
            )
        total_items = sum(int(count) for count in item_counts.values())
        done = sum(int(item_counts.get(status, 0)) for status in DONE_STATUSES)
        return Ok(
            ComplianceSummary(
                total_packs=len(statuses),
                completed_packs=sum(1 for status in statuses if status == PackAssignmentStatus.COMPLETED.value),
                total_items=total_items,
                completed_items=int(item_counts.get(ProgressStatus.COMPLETED.value, 0)),
                in_progress_items=int(item_counts.get(ProgressStatus.IN_PROGRESS.value, 0)),
                overdue_items=int(item_counts.get(ProgressStatus.OVERDUE.value, 0)),
                overall_percentage=completion_percentage(done, total_items),
            )
        )

    # Seeding

    @store_operation("compliance_seed_defaults")
    async def seed_default_packs(self, catalog: tuple[PackDefinition, ...] = DEFAULT_PACKS) -> Result[int]:
        # No-op once any pack exists; returns the number of packs inserted.
        async with self._session_factory() as session:
            async with session.begin():
                existing = (await session.execute(select(func.count(CompliancePack.id)))).scalar_one()
                if existing:
                    logger.info("compliance_seed_skipped existing_packs=%s", existing)
                    return Ok(0)
                for definition in catalog:
                    pack = CompliancePack(
                        code=definition.code,
                        name=definition.name,
                        description=definition.description,
                        regulation=definition.regulation.value,
                        applicable_countries=list(definition.applicable_countries),
                        applicable_business_types=[],
                        version=definition.version,
                        is_active=True,
                        is_default=definition.is_default,
                        total_items=len(definition.items),
                    )
                    session.add(pack)
                    await session.flush()
                    for index, item in enumerate(definition.items):
                        session.add(
                            ComplianceChecklistItem(
                                pack_id=pack.id,
                                category=item.category,
                                title=item.title,
                                description=item.description,
                                guidance=item.guidance,
                                priority=item.priority.value,
                                is_mandatory=item.is_mandatory,
                                evidence_required=item.evidence_required,
                                evidence_types=list(item.evidence_types),
                                due_days=item.due_days,
                                sort_order=index,
                            )
                        )
        logger.info("compliance_seed_completed packs=%s", len(catalog))
        return Ok(len(catalog))
