from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from privacycore.services.compliance_catalog import DEFAULT_PACKS
from privacycore.services.compliance_programs import ChecklistItemParams, PackParams, completion_percentage


async def _pack_with_items(core, count: int = 3, *, code: str = "TEST", due_days: int | None = None):
    pack = (await core.programs.create_pack(PackParams(code=code, name=f"{code} pack", regulation="gdpr"))).unwrap()
    items = []
    for index in range(count):
        item = (
            await core.programs.create_checklist_item(
                pack.id,
                ChecklistItemParams(category="governance", title=f"Item {index}", sort_order=index, due_days=due_days),
            )
        ).unwrap()
        items.append(item)
    return pack, items


def test_completion_percentage_rounds_half_up() -> None:
    assert completion_percentage(0, 0) == 0
    assert completion_percentage(1, 3) == 33
    assert completion_percentage(2, 3) == 67
    assert completion_percentage(1, 8) == 13
    assert completion_percentage(3, 3) == 100


@pytest.mark.asyncio
async def test_item_mutations_keep_total_items(core) -> None:
    pack, items = await _pack_with_items(core, 3)
    assert (await core.programs.get_pack(pack.id)).unwrap().total_items == 3

    assert (await core.programs.delete_checklist_item(items[0].id)).unwrap() is True
    assert (await core.programs.get_pack(pack.id)).unwrap().total_items == 2
    remaining = (await core.programs.get_checklist_items(pack.id)).unwrap()
    assert [item.title for item in remaining] == ["Item 1", "Item 2"]


@pytest.mark.asyncio
async def test_create_item_for_unknown_pack(core) -> None:
    result = await core.programs.create_checklist_item("missing", ChecklistItemParams(category="c", title="t"))
    assert not result.ok
    assert result.error.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_assign_creates_one_progress_row_per_item(core) -> None:
    due = datetime(2026, 12, 31, tzinfo=timezone.utc)
    pack, items = await _pack_with_items(core, 3, due_days=10)
    assignment = (await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1", due_date=due)).unwrap()
    assert assignment.status == "active"
    assert assignment.completion_percentage == 0

    progress = (await core.programs.get_tenant_progress("t1", pack.id)).unwrap()
    assert len(progress) == 3
    assert {view.progress.status for view in progress} == {"not_started"}
    assert {view.item.id for view in progress} == {item.id for item in items}
    assert progress[0].progress.due_date == due - timedelta(days=10)


@pytest.mark.asyncio
async def test_assign_twice_conflicts(core) -> None:
    pack, _items = await _pack_with_items(core, 2)
    assert (await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")).ok
    again = await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")
    assert not again.ok
    assert again.error.code == "PACK_ALREADY_ASSIGNED"
    assert again.error.status_code == 409
    assert len((await core.programs.get_tenant_progress("t1", pack.id)).unwrap()) == 2

    other_tenant = await core.programs.assign_pack_to_tenant("t2", pack.id, "admin-2")
    assert other_tenant.ok


@pytest.mark.asyncio
async def test_assign_unknown_pack(core) -> None:
    result = await core.programs.assign_pack_to_tenant("t1", "missing", "admin-1")
    assert result.error.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_progress_updates_roll_up(core) -> None:
    pack, items = await _pack_with_items(core, 3)
    await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")

    started = (
        await core.programs.update_item_progress("t1", pack.id, items[0].id, {"status": "in_progress"}, "u1")
    ).unwrap()
    assert started.started_at is not None

    done = (
        await core.programs.update_item_progress(
            "t1", pack.id, items[0].id, {"status": "completed", "notes": "signed off"}, "u1"
        )
    ).unwrap()
    assert done.completed_by == "u1"
    assert done.completed_at is not None
    assert (await core.programs.update_pack_completion_percentage("t1", pack.id)).unwrap() == 33

    await core.programs.update_item_progress("t1", pack.id, items[1].id, {"status": "not_applicable"}, "u1")
    packs = (await core.programs.get_tenant_packs("t1")).unwrap()
    assert packs[0].assignment.completion_percentage == 67
    assert packs[0].assignment.status == "active"

    await core.programs.update_item_progress("t1", pack.id, items[2].id, {"status": "completed"}, "u2")
    packs = (await core.programs.get_tenant_packs("t1")).unwrap()
    assert packs[0].assignment.completion_percentage == 100
    assert packs[0].assignment.status == "completed"
    assert packs[0].assignment.completed_at is not None
    assert packs[0].pack.id == pack.id

    # Reopening an item drops the pack back to active.
    await core.programs.update_item_progress("t1", pack.id, items[2].id, {"status": "in_progress"}, "u2")
    packs = (await core.programs.get_tenant_packs("t1")).unwrap()
    assert packs[0].assignment.completion_percentage == 67
    assert packs[0].assignment.status == "active"
    assert packs[0].assignment.completed_at is None


@pytest.mark.asyncio
async def test_progress_update_rejects_unknown_fields(core) -> None:
    pack, items = await _pack_with_items(core, 1)
    await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")
    result = await core.programs.update_item_progress("t1", pack.id, items[0].id, {"completed_by": "x"}, "u1")
    assert not result.ok
    assert result.error.code == "POLICY_VIOLATION"

    missing = await core.programs.update_item_progress("t1", pack.id, "missing", {"status": "completed"}, "u1")
    assert missing.error.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_deleting_item_recomputes_rollup(core) -> None:
    pack, items = await _pack_with_items(core, 2)
    await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")
    await core.programs.update_item_progress("t1", pack.id, items[0].id, {"status": "completed"}, "u1")
    assert (await core.programs.get_tenant_packs("t1")).unwrap()[0].assignment.completion_percentage == 50

    await core.programs.delete_checklist_item(items[1].id)
    assignment = (await core.programs.get_tenant_packs("t1")).unwrap()[0].assignment
    assert assignment.completion_percentage == 100
    assert assignment.status == "completed"


@pytest.mark.asyncio
async def test_compliance_summary(core) -> None:
    first, first_items = await _pack_with_items(core, 2, code="A")
    second, second_items = await _pack_with_items(core, 2, code="B")
    await core.programs.assign_pack_to_tenant("t1", first.id, "admin-1")
    await core.programs.assign_pack_to_tenant("t1", second.id, "admin-1")
    for item in first_items:
        await core.programs.update_item_progress("t1", first.id, item.id, {"status": "completed"}, "u1")
    await core.programs.update_item_progress("t1", second.id, second_items[0].id, {"status": "in_progress"}, "u1")
    await core.programs.update_item_progress("t1", second.id, second_items[1].id, {"status": "overdue"}, "u1")

    summary = (await core.programs.get_compliance_summary("t1")).unwrap()
    assert summary.total_packs == 2
    assert summary.completed_packs == 1
    assert summary.total_items == 4
    assert summary.completed_items == 2
    assert summary.in_progress_items == 1
    assert summary.overdue_items == 1
    assert summary.overall_percentage == 50

    empty = (await core.programs.get_compliance_summary("nobody")).unwrap()
    assert empty.total_packs == 0
    assert empty.overall_percentage == 0


@pytest.mark.asyncio
async def test_unassign_removes_progress(core) -> None:
    pack, _items = await _pack_with_items(core, 2)
    await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")
    assert (await core.programs.unassign_pack_from_tenant("t1", pack.id)).unwrap() is True
    assert (await core.programs.get_tenant_packs("t1")).unwrap() == []
    assert (await core.programs.get_tenant_progress("t1", pack.id)).unwrap() == []
    again = await core.programs.unassign_pack_from_tenant("t1", pack.id)
    assert again.error.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_available_packs_filtering(core) -> None:
    await core.programs.create_pack(PackParams(code="EU", name="EU pack", regulation="gdpr"))
    await core.programs.create_pack(
        PackParams(code="SG", name="SG pack", regulation="pdpa_sg", applicable_countries=["SG"])
    )
    await core.programs.create_pack(
        PackParams(code="OFF", name="Retired pack", regulation="gdpr", is_active=False)
    )

    all_active = (await core.programs.get_available_packs()).unwrap()
    assert {pack.code for pack in all_active} == {"EU", "SG"}

    in_india = (await core.programs.get_available_packs(country="IN")).unwrap()
    assert {pack.code for pack in in_india} == {"EU"}

    pdpa = (await core.programs.get_available_packs(regulation="pdpa_sg", country="SG")).unwrap()
    assert [pack.code for pack in pdpa] == ["SG"]


@pytest.mark.asyncio
async def test_update_and_delete_pack(core) -> None:
    pack, _items = await _pack_with_items(core, 2)
    await core.programs.assign_pack_to_tenant("t1", pack.id, "admin-1")

    updated = (await core.programs.update_pack(pack.id, {"name": "Renamed", "is_default": True})).unwrap()
    assert updated.name == "Renamed"
    assert updated.is_default is True

    rejected = await core.programs.update_pack(pack.id, {"total_items": 99})
    assert rejected.error.code == "POLICY_VIOLATION"

    assert (await core.programs.delete_pack(pack.id)).unwrap() is True
    assert (await core.programs.get_pack(pack.id)).unwrap() is None
    assert (await core.programs.get_tenant_packs("t1")).unwrap() == []


@pytest.mark.asyncio
async def test_seed_default_packs_is_idempotent(core) -> None:
    created = (await core.programs.seed_default_packs()).unwrap()
    assert created == len(DEFAULT_PACKS)

    packs = (await core.programs.get_available_packs()).unwrap()
    by_code = {pack.code: pack for pack in packs}
    assert set(by_code) == {"GDPR", "PDPA_SG", "DPDP", "UAE_DPL"}
    gdpr_items = (await core.programs.get_checklist_items(by_code["GDPR"].id)).unwrap()
    assert len(gdpr_items) == by_code["GDPR"].total_items == 10

    assert (await core.programs.seed_default_packs()).unwrap() == 0
