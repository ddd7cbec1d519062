from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from privacycore.apps.api.deps import (
    Accessor,
    get_accessor,
    get_core,
    require_admin,
    require_platform_admin,
    require_tenant,
    unwrap,
)
from privacycore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from privacycore.apps.api.response import SuccessEnvelope, success_response
from privacycore.core.errors import NotFoundError
from privacycore.domain.enums import ItemPriority, ProgressStatus, Regulation
from privacycore.services.compliance_programs import ChecklistItemParams, PackParams
from privacycore.services.context import PrivacyCore


router = APIRouter(prefix="/compliance", tags=["compliance"], responses=DEFAULT_ERROR_RESPONSES)


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PackResponse(OrmModel):
    id: str
    code: str
    name: str
    description: str | None
    regulation: str
    applicable_countries: list[str]
    applicable_business_types: list[str]
    version: str
    is_active: bool
    is_default: bool
    total_items: int


class PackCreateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1)
    regulation: Regulation
    description: str | None = None
    applicable_countries: list[str] = Field(default_factory=list)
    applicable_business_types: list[str] = Field(default_factory=list)
    version: str = "1.0"
    is_active: bool = True
    is_default: bool = False


class PackUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    regulation: Regulation | None = None
    applicable_countries: list[str] | None = None
    applicable_business_types: list[str] | None = None
    version: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None


class ItemResponse(OrmModel):
    id: str
    pack_id: str
    category: str
    title: str
    description: str | None
    guidance: str | None
    priority: str
    is_mandatory: bool
    evidence_required: bool
    evidence_types: list[str]
    due_days: int | None
    sort_order: int


class ItemCreateRequest(BaseModel):
    category: str
    title: str = Field(min_length=1)
    description: str | None = None
    guidance: str | None = None
    priority: ItemPriority = ItemPriority.MEDIUM
    is_mandatory: bool = True
    evidence_required: bool = False
    evidence_types: list[str] = Field(default_factory=list)
    due_days: int | None = Field(default=None, ge=0)
    sort_order: int = 0


class ItemUpdateRequest(BaseModel):
    category: str | None = None
    title: str | None = None
    description: str | None = None
    guidance: str | None = None
    priority: ItemPriority | None = None
    is_mandatory: bool | None = None
    evidence_required: bool | None = None
    evidence_types: list[str] | None = None
    due_days: int | None = Field(default=None, ge=0)
    sort_order: int | None = None


class AssignmentResponse(OrmModel):
    id: str
    tenant_id: str
    pack_id: str
    assigned_by: str | None
    assigned_at: datetime
    due_date: datetime | None
    status: str
    completion_percentage: int
    completed_at: datetime | None


class TenantPackResponse(BaseModel):
    assignment: AssignmentResponse
    pack: PackResponse


class AssignRequest(BaseModel):
    pack_id: str
    due_date: datetime | None = None


class ProgressResponse(OrmModel):
    id: str
    item_id: str
    status: str
    notes: str | None
    evidence_url: str | None
    evidence_description: str | None
    assigned_to: str | None
    due_date: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    completed_by: str | None


class ProgressItemResponse(BaseModel):
    progress: ProgressResponse
    item: ItemResponse


class ProgressPatchRequest(BaseModel):
    status: ProgressStatus | None = None
    notes: str | None = None
    evidence_url: str | None = None
    evidence_description: str | None = None
    assigned_to: str | None = None


class SummaryResponse(BaseModel):
    total_packs: int
    completed_packs: int
    total_items: int
    completed_items: int
    in_progress_items: int
    overdue_items: int
    overall_percentage: int


class SeedResponse(BaseModel):
    packs_created: int
    configs_created: int


class ComplianceConfigResponse(OrmModel):
    id: str
    regulation: str
    name: str
    jurisdiction: str | None
    dsar_response_days: int
    breach_notification_hours: int
    requires_dpo: bool
    config_json: dict[str, Any]


class TenantSettingsResponse(OrmModel):
    tenant_id: str
    primary_regulation: str
    additional_regulations: list[str]
    dpo_name: str | None
    dpo_email: str | None
    data_residency_region: str | None
    breach_notification_email: str | None
    masking_enabled: bool
    access_logging_enabled: bool
    dsar_auto_acknowledge: bool


class TenantSettingsRequest(BaseModel):
    primary_regulation: Regulation | None = None
    additional_regulations: list[Regulation] | None = None
    dpo_name: str | None = None
    dpo_email: str | None = None
    data_residency_region: str | None = None
    breach_notification_email: str | None = None
    masking_enabled: bool | None = None
    access_logging_enabled: bool | None = None
    dsar_auto_acknowledge: bool | None = None


# Packs and checklist items


def _set_fields(payload: BaseModel) -> dict[str, Any]:
    # Template columns are non-nullable; explicit nulls leave the value unchanged.
    return {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}


@router.get("/packs", response_model=SuccessEnvelope[list[PackResponse]])
async def list_available_packs(
    request: Request,
    regulation: Regulation | None = Query(default=None),
    country: str | None = Query(default=None),
    business_type: str | None = Query(default=None),
    _accessor: Accessor = Depends(get_accessor),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    packs = unwrap(await core.programs.get_available_packs(regulation, country, business_type))
    return success_response(request=request, data=[PackResponse.model_validate(pack) for pack in packs])


@router.post("/packs", response_model=SuccessEnvelope[PackResponse], status_code=201)
async def create_pack(
    payload: PackCreateRequest,
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    pack = unwrap(await core.programs.create_pack(PackParams(**payload.model_dump())))
    return success_response(request=request, data=PackResponse.model_validate(pack))


@router.get("/packs/{pack_id}", response_model=SuccessEnvelope[PackResponse])
async def get_pack(
    pack_id: str,
    request: Request,
    _accessor: Accessor = Depends(get_accessor),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    pack = unwrap(await core.programs.get_pack(pack_id))
    if pack is None:
        raise NotFoundError("Compliance pack not found", details={"pack_id": pack_id})
    return success_response(request=request, data=PackResponse.model_validate(pack))


@router.patch("/packs/{pack_id}", response_model=SuccessEnvelope[PackResponse])
async def update_pack(
    pack_id: str,
    payload: PackUpdateRequest,
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    pack = unwrap(await core.programs.update_pack(pack_id, _set_fields(payload)))
    return success_response(request=request, data=PackResponse.model_validate(pack))


@router.delete("/packs/{pack_id}", response_model=SuccessEnvelope[dict[str, bool]])
async def delete_pack(
    pack_id: str,
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    deleted = unwrap(await core.programs.delete_pack(pack_id))
    return success_response(request=request, data={"deleted": deleted})


@router.get("/packs/{pack_id}/items", response_model=SuccessEnvelope[list[ItemResponse]])
async def list_items(
    pack_id: str,
    request: Request,
    _accessor: Accessor = Depends(get_accessor),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    items = unwrap(await core.programs.get_checklist_items(pack_id))
    return success_response(request=request, data=[ItemResponse.model_validate(item) for item in items])


@router.post("/packs/{pack_id}/items", response_model=SuccessEnvelope[ItemResponse], status_code=201)
async def create_item(
    pack_id: str,
    payload: ItemCreateRequest,
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    item = unwrap(await core.programs.create_checklist_item(pack_id, ChecklistItemParams(**payload.model_dump())))
    return success_response(request=request, data=ItemResponse.model_validate(item))


@router.patch("/items/{item_id}", response_model=SuccessEnvelope[ItemResponse])
async def update_item(
    item_id: str,
    payload: ItemUpdateRequest,
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    item = unwrap(await core.programs.update_checklist_item(item_id, _set_fields(payload)))
    return success_response(request=request, data=ItemResponse.model_validate(item))


@router.delete("/items/{item_id}", response_model=SuccessEnvelope[dict[str, bool]])
async def delete_item(
    item_id: str,
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    deleted = unwrap(await core.programs.delete_checklist_item(item_id))
    return success_response(request=request, data={"deleted": deleted})


@router.post("/seed-defaults", response_model=SuccessEnvelope[SeedResponse])
async def seed_defaults(
    request: Request,
    _accessor: Accessor = Depends(require_platform_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    packs_created = unwrap(await core.programs.seed_default_packs())
    configs_created = unwrap(await core.tenant_settings.seed_compliance_configs())
    return success_response(
        request=request,
        data=SeedResponse(packs_created=packs_created, configs_created=configs_created),
    )


# Tenant assignment and progress


@router.get("/tenant/packs", response_model=SuccessEnvelope[list[TenantPackResponse]])
async def list_tenant_packs(
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    views = unwrap(await core.programs.get_tenant_packs(tenant_id))
    data = [
        TenantPackResponse(
            assignment=AssignmentResponse.model_validate(view.assignment),
            pack=PackResponse.model_validate(view.pack),
        )
        for view in views
    ]
    return success_response(request=request, data=data)


@router.post("/tenant/packs", response_model=SuccessEnvelope[AssignmentResponse], status_code=201)
async def assign_pack(
    payload: AssignRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    assignment = unwrap(
        await core.programs.assign_pack_to_tenant(tenant_id, payload.pack_id, accessor.accessor_id, payload.due_date)
    )
    return success_response(request=request, data=AssignmentResponse.model_validate(assignment))


@router.delete("/tenant/packs/{pack_id}", response_model=SuccessEnvelope[dict[str, bool]])
async def unassign_pack(
    pack_id: str,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    _accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    removed = unwrap(await core.programs.unassign_pack_from_tenant(tenant_id, pack_id))
    return success_response(request=request, data={"deleted": removed})


@router.get("/tenant/packs/{pack_id}/progress", response_model=SuccessEnvelope[list[ProgressItemResponse]])
async def get_progress(
    pack_id: str,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    views = unwrap(await core.programs.get_tenant_progress(tenant_id, pack_id))
    data = [
        ProgressItemResponse(
            progress=ProgressResponse.model_validate(view.progress),
            item=ItemResponse.model_validate(view.item),
        )
        for view in views
    ]
    return success_response(request=request, data=data)


@router.patch(
    "/tenant/packs/{pack_id}/progress/{item_id}",
    response_model=SuccessEnvelope[ProgressResponse],
)
async def update_progress(
    pack_id: str,
    item_id: str,
    payload: ProgressPatchRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    accessor: Accessor = Depends(get_accessor),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    progress = unwrap(
        await core.programs.update_item_progress(
            tenant_id,
            pack_id,
            item_id,
            payload.model_dump(exclude_unset=True),
            accessor.accessor_id,
        )
    )
    return success_response(request=request, data=ProgressResponse.model_validate(progress))


@router.get("/tenant/summary", response_model=SuccessEnvelope[SummaryResponse])
async def get_summary(
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    summary = unwrap(await core.programs.get_compliance_summary(tenant_id))
    data = SummaryResponse(
        total_packs=summary.total_packs,
        completed_packs=summary.completed_packs,
        total_items=summary.total_items,
        completed_items=summary.completed_items,
        in_progress_items=summary.in_progress_items,
        overdue_items=summary.overdue_items,
        overall_percentage=summary.overall_percentage,
    )
    return success_response(request=request, data=data)


# Regulation configs and tenant settings


@router.get("/configs", response_model=SuccessEnvelope[list[ComplianceConfigResponse]])
async def list_configs(
    request: Request,
    _accessor: Accessor = Depends(get_accessor),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    configs = unwrap(await core.tenant_settings.get_all_compliance_configs())
    return success_response(request=request, data=[ComplianceConfigResponse.model_validate(row) for row in configs])


@router.get("/configs/{regulation}", response_model=SuccessEnvelope[ComplianceConfigResponse])
async def get_config(
    regulation: Regulation,
    request: Request,
    _accessor: Accessor = Depends(get_accessor),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    config = unwrap(await core.tenant_settings.get_compliance_config(regulation))
    if config is None:
        raise NotFoundError("Compliance config not found", details={"regulation": regulation.value})
    return success_response(request=request, data=ComplianceConfigResponse.model_validate(config))


@router.get("/tenant/settings", response_model=SuccessEnvelope[TenantSettingsResponse | None])
async def get_tenant_settings(
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    settings_row = unwrap(await core.tenant_settings.get_tenant_compliance_settings(tenant_id))
    data = TenantSettingsResponse.model_validate(settings_row) if settings_row else None
    return success_response(request=request, data=data)


@router.put("/tenant/settings", response_model=SuccessEnvelope[TenantSettingsResponse])
async def update_tenant_settings(
    payload: TenantSettingsRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    _accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    settings_row = unwrap(
        await core.tenant_settings.update_tenant_compliance_settings(
            tenant_id, payload.model_dump(exclude_unset=True)
        )
    )
    return success_response(request=request, data=TenantSettingsResponse.model_validate(settings_row))
