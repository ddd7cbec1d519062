from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from privacycore.apps.api.deps import Accessor, get_core, require_admin, require_tenant, unwrap
from privacycore.apps.api.masking import masked_route_class
from privacycore.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from privacycore.apps.api.response import Page, SuccessEnvelope, success_response
from privacycore.core.errors import NotFoundError
from privacycore.domain.enums import (
    AccessorType,
    BreachSeverity,
    BreachStatus,
    ConsentType,
    DataCategory,
    DsarRequestType,
    DsarStatus,
    MaskingType,
    Regulation,
    RiskLevel,
)
from privacycore.services.breach import BreachParams
from privacycore.services.consent import ConsentParams
from privacycore.services.context import PrivacyCore
from privacycore.services.dsar import DsarParams


router = APIRouter(prefix="/privacy", tags=["privacy"], responses=DEFAULT_ERROR_RESPONSES)
# DSAR payloads carry subject contact details and go through response masking.
dsar_router = APIRouter(
    prefix="/privacy/dsars",
    tags=["privacy"],
    responses=DEFAULT_ERROR_RESPONSES,
    route_class=masked_route_class("dsar_request"),
)


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Consents


class ConsentRecordRequest(BaseModel):
    subject_type: str
    subject_id: str
    consent_type: ConsentType
    purpose: str
    subject_email: str | None = None
    legal_basis: str | None = None
    consent_text: str | None = None
    version: str | None = None
    expires_at: datetime | None = None
    collection_method: str | None = None


class ConsentWithdrawRequest(BaseModel):
    subject_type: str
    subject_id: str
    consent_type: ConsentType
    reason: str | None = None


class ConsentResponse(OrmModel):
    id: str
    tenant_id: str
    subject_type: str
    subject_id: str
    subject_email: str | None
    consent_type: str
    status: str
    purpose: str
    legal_basis: str | None
    version: str | None
    granted_at: datetime
    expires_at: datetime | None
    withdrawn_at: datetime | None
    withdrawal_reason: str | None


class ConsentCheckResponse(BaseModel):
    has_consent: bool
    record: ConsentResponse | None


class ConsentWithdrawResponse(BaseModel):
    withdrawn: int


@router.post("/consents", response_model=SuccessEnvelope[ConsentResponse], status_code=201)
async def record_consent(
    payload: ConsentRecordRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    # Recording a grant supersedes any currently granted row for the same key.
    record = unwrap(
        await core.consent.record_consent(
            ConsentParams(
                tenant_id=tenant_id,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                **payload.model_dump(),
            )
        )
    )
    return success_response(request=request, data=ConsentResponse.model_validate(record))


@router.post("/consents/withdraw", response_model=SuccessEnvelope[ConsentWithdrawResponse])
async def withdraw_consent(
    payload: ConsentWithdrawRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    withdrawn = unwrap(
        await core.consent.withdraw_consent(
            tenant_id,
            payload.subject_type,
            payload.subject_id,
            payload.consent_type,
            payload.reason,
        )
    )
    return success_response(request=request, data=ConsentWithdrawResponse(withdrawn=withdrawn))


@router.get("/consents/check", response_model=SuccessEnvelope[ConsentCheckResponse])
async def check_consent(
    request: Request,
    subject_type: str = Query(...),
    subject_id: str = Query(...),
    consent_type: ConsentType = Query(...),
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    check = unwrap(await core.consent.check_consent(tenant_id, subject_type, subject_id, consent_type))
    data = ConsentCheckResponse(
        has_consent=check.has_consent,
        record=ConsentResponse.model_validate(check.record) if check.record else None,
    )
    return success_response(request=request, data=data)


@router.get("/consents/{subject_type}/{subject_id}", response_model=SuccessEnvelope[list[ConsentResponse]])
async def get_subject_consents(
    subject_type: str,
    subject_id: str,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    records = unwrap(await core.consent.get_subject_consents(tenant_id, subject_type, subject_id))
    return success_response(request=request, data=[ConsentResponse.model_validate(row) for row in records])


# DSARs


class DsarCreateRequest(BaseModel):
    request_type: DsarRequestType
    subject_email: str
    subject_name: str | None = None
    subject_phone: str | None = None
    subject_id_type: str | None = None
    subject_id_number: str | None = None
    request_details: str | None = None
    data_categories: list[str] = Field(default_factory=list)
    regulation: Regulation | None = None
    response_window_days: int | None = Field(default=None, ge=1, le=365)


class DsarStatusRequest(BaseModel):
    status: DsarStatus
    notes: str | None = None
    # Administrative override of the transition table.
    override: bool = False


class DsarResponse(OrmModel):
    id: str
    tenant_id: str
    request_type: str
    subject_email: str
    subject_name: str | None
    subject_phone: str | None
    subject_id_type: str | None
    subject_id_number: str | None
    request_details: str | None
    data_categories: list[str]
    regulation: str | None
    status: str
    response_deadline: datetime
    acknowledged_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class DsarActivityResponse(OrmModel):
    id: str
    dsar_id: str
    sequence: int
    action: str
    previous_status: str | None
    new_status: str | None
    performed_by: str | None
    performed_by_email: str | None
    notes: str | None
    created_at: datetime


@dsar_router.post("", response_model=SuccessEnvelope[DsarResponse], status_code=201)
async def create_dsar(
    payload: DsarCreateRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    dsar = unwrap(
        await core.dsar.create_dsar(
            DsarParams(
                tenant_id=tenant_id,
                ip_address=request.client.host if request.client else None,
                **payload.model_dump(),
            )
        )
    )
    return success_response(request=request, data=DsarResponse.model_validate(dsar))


@dsar_router.get("", response_model=SuccessEnvelope[Page[DsarResponse]])
async def list_dsars(
    request: Request,
    status: DsarStatus | None = Query(default=None),
    subject_email: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    page = unwrap(
        await core.dsar.get_dsars(
            tenant_id=tenant_id,
            status=status,
            subject_email=subject_email,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    )
    data = Page[DsarResponse].build(
        page.requests, DsarResponse.model_validate, total=page.total, limit=limit, offset=offset
    )
    return success_response(request=request, data=data)


async def _tenant_dsar(core: PrivacyCore, dsar_id: str, tenant_id: str):
    dsar = unwrap(await core.dsar.get_dsar(dsar_id))
    if dsar is None or dsar.tenant_id != tenant_id:
        raise NotFoundError("DSAR not found", details={"dsar_id": dsar_id})
    return dsar


@dsar_router.get("/{dsar_id}", response_model=SuccessEnvelope[DsarResponse])
async def get_dsar(
    dsar_id: str,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    dsar = await _tenant_dsar(core, dsar_id, tenant_id)
    return success_response(request=request, data=DsarResponse.model_validate(dsar))


@dsar_router.patch("/{dsar_id}/status", response_model=SuccessEnvelope[DsarResponse])
async def update_dsar_status(
    dsar_id: str,
    payload: DsarStatusRequest,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    await _tenant_dsar(core, dsar_id, tenant_id)
    dsar = unwrap(
        await core.dsar.update_dsar_status(
            dsar_id,
            payload.status,
            accessor.accessor_id,
            accessor.email,
            payload.notes,
            override=payload.override,
        )
    )
    return success_response(request=request, data=DsarResponse.model_validate(dsar))


@router.get("/dsars/{dsar_id}/activity", response_model=SuccessEnvelope[list[DsarActivityResponse]])
async def get_dsar_activity(
    dsar_id: str,
    request: Request,
    tenant_id: str = Depends(require_tenant),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    await _tenant_dsar(core, dsar_id, tenant_id)
    activity = unwrap(await core.dsar.get_dsar_activity_log(dsar_id))
    return success_response(request=request, data=[DsarActivityResponse.model_validate(row) for row in activity])


# Breaches


class BreachReportRequest(BaseModel):
    breach_type: str
    severity: BreachSeverity
    discovered_at: datetime
    regulation: Regulation | None = None
    occurred_at: datetime | None = None
    affected_data_categories: list[str] = Field(default_factory=list)
    affected_subjects_count: int | None = Field(default=None, ge=0)
    description: str | None = None
    impact_assessment: str | None = None
    containment_actions: str | None = None


class BreachResponse(OrmModel):
    id: str
    tenant_id: str | None
    breach_type: str
    severity: str
    regulation: str | None
    discovered_at: datetime
    occurred_at: datetime | None
    report_deadline: datetime
    affected_data_categories: list[str]
    affected_subjects_count: int | None
    description: str | None
    impact_assessment: str | None
    containment_actions: str | None
    status: str
    created_at: datetime


def _tenant_scope(accessor: Accessor) -> str | None:
    # Only platform admins without a tenant see rows across all tenants.
    if accessor.accessor_type == AccessorType.PLATFORM_ADMIN and not accessor.tenant_id:
        return None
    return require_tenant(accessor)


@router.post("/breaches", response_model=SuccessEnvelope[BreachResponse], status_code=201)
async def report_breach(
    payload: BreachReportRequest,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    breach_id = unwrap(
        await core.breaches.report_data_breach(BreachParams(tenant_id=_tenant_scope(accessor), **payload.model_dump()))
    )
    breach = unwrap(await core.breaches.get_breach(breach_id))
    return success_response(request=request, data=BreachResponse.model_validate(breach))


@router.get("/breaches", response_model=SuccessEnvelope[Page[BreachResponse]])
async def list_breaches(
    request: Request,
    status: BreachStatus | None = Query(default=None),
    severity: BreachSeverity | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    page = unwrap(
        await core.breaches.get_breaches(
            tenant_id=_tenant_scope(accessor),
            status=status,
            severity=severity,
            limit=limit,
            offset=offset,
        )
    )
    data = Page[BreachResponse].build(
        page.breaches, BreachResponse.model_validate, total=page.total, limit=limit, offset=offset
    )
    return success_response(request=request, data=data)


@router.get("/breaches/{breach_id}", response_model=SuccessEnvelope[BreachResponse])
async def get_breach(
    breach_id: str,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    breach = unwrap(await core.breaches.get_breach(breach_id))
    scope = _tenant_scope(accessor)
    if breach is None or (scope is not None and breach.tenant_id != scope):
        raise NotFoundError("Breach not found", details={"breach_id": breach_id})
    return success_response(request=request, data=BreachResponse.model_validate(breach))


# Access logs


class AccessLogResponse(OrmModel):
    id: str
    tenant_id: str | None
    accessor_type: str
    accessor_id: str
    accessor_email: str | None
    accessor_role: str | None
    data_category: str
    resource_type: str
    resource_id: str
    fields_accessed: list[str]
    access_type: str
    access_reason: str
    reason_details: str | None
    ticket_id: str | None
    ip_address: str | None
    risk_level: str
    was_data_masked: bool
    flagged: bool
    flag_reason: str | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    created_at: datetime


class FlagRequest(BaseModel):
    reason: str = Field(min_length=1)


class UnusualAccessResponse(BaseModel):
    is_unusual: bool
    reasons: list[str]
    risk_score: int
    hour_count: int
    day_count: int
    phi_hour_count: int


@router.get("/access-logs", response_model=SuccessEnvelope[Page[AccessLogResponse]])
async def list_access_logs(
    request: Request,
    accessor_id: str | None = Query(default=None),
    resource_type: str | None = Query(default=None),
    resource_id: str | None = Query(default=None),
    data_category: DataCategory | None = Query(default=None),
    risk_level: RiskLevel | None = Query(default=None),
    flagged: bool | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    page = unwrap(
        await core.audit.get_access_logs(
            tenant_id=_tenant_scope(accessor),
            accessor_id=accessor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            data_category=data_category,
            risk_level=risk_level,
            flagged=flagged,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    )
    data = Page[AccessLogResponse].build(
        page.logs, AccessLogResponse.model_validate, total=page.total, limit=limit, offset=offset
    )
    return success_response(request=request, data=data)


@router.get("/access-logs/unusual/{accessor_id}", response_model=SuccessEnvelope[UnusualAccessResponse])
async def check_unusual_access(
    accessor_id: str,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    report = unwrap(await core.audit.detect_unusual_access(accessor_id, _tenant_scope(accessor)))
    data = UnusualAccessResponse(
        is_unusual=report.is_unusual,
        reasons=report.reasons,
        risk_score=report.risk_score,
        hour_count=report.hour_count,
        day_count=report.day_count,
        phi_hour_count=report.phi_hour_count,
    )
    return success_response(request=request, data=data)


@router.get("/access-logs/{log_id}", response_model=SuccessEnvelope[AccessLogResponse])
async def get_access_log(
    log_id: str,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    entry = unwrap(await core.audit.get_access_log(log_id))
    scope = _tenant_scope(accessor)
    if entry is None or (scope is not None and entry.tenant_id != scope):
        raise NotFoundError("Access log not found", details={"log_id": log_id})
    return success_response(request=request, data=AccessLogResponse.model_validate(entry))


@router.post("/access-logs/{log_id}/flag", response_model=SuccessEnvelope[AccessLogResponse])
async def flag_access_log(
    log_id: str,
    payload: FlagRequest,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    entry = unwrap(await core.audit.get_access_log(log_id))
    scope = _tenant_scope(accessor)
    if entry is None or (scope is not None and entry.tenant_id != scope):
        raise NotFoundError("Access log not found", details={"log_id": log_id})
    flagged = unwrap(await core.audit.flag_access_log(log_id, payload.reason, accessor.accessor_id))
    return success_response(request=request, data=AccessLogResponse.model_validate(flagged))


# Masking rules


class MaskingRuleRequest(BaseModel):
    resource_type: str
    field_name: str
    masking_type: MaskingType = MaskingType.PARTIAL
    role_name: str | None = None
    masking_pattern: str | None = None
    preserve_length: bool = True
    priority: int = 0
    is_enabled: bool = True
    description: str | None = None
    # Platform admins may create global rules shared by every tenant.
    global_rule: bool = False


class MaskingRuleToggleRequest(BaseModel):
    is_enabled: bool


class MaskingRuleResponse(OrmModel):
    id: str
    tenant_id: str | None
    role_name: str | None
    resource_type: str
    field_name: str
    masking_type: str
    masking_pattern: str | None
    preserve_length: bool
    priority: int
    is_enabled: bool
    description: str | None


@router.get("/masking-rules", response_model=SuccessEnvelope[list[MaskingRuleResponse]])
async def list_masking_rules(
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    rules = unwrap(await core.masking.list_rules(_tenant_scope(accessor)))
    return success_response(request=request, data=[MaskingRuleResponse.model_validate(rule) for rule in rules])


@router.post("/masking-rules", response_model=SuccessEnvelope[MaskingRuleResponse], status_code=201)
async def create_masking_rule(
    payload: MaskingRuleRequest,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    # Edits reach cached rule sets once their TTL expires.
    tenant_id = _tenant_scope(accessor)
    if payload.global_rule and accessor.accessor_type == AccessorType.PLATFORM_ADMIN:
        tenant_id = None
    rule = unwrap(
        await core.masking.create_rule(
            tenant_id=tenant_id,
            **payload.model_dump(exclude={"global_rule"}),
        )
    )
    return success_response(request=request, data=MaskingRuleResponse.model_validate(rule))


@router.patch("/masking-rules/{rule_id}", response_model=SuccessEnvelope[MaskingRuleResponse])
async def toggle_masking_rule(
    rule_id: str,
    payload: MaskingRuleToggleRequest,
    request: Request,
    accessor: Accessor = Depends(require_admin),
    core: PrivacyCore = Depends(get_core),
) -> dict[str, Any]:
    rules = unwrap(await core.masking.list_rules(_tenant_scope(accessor)))
    visible = {rule.id: rule for rule in rules}
    target = visible.get(rule_id)
    # Tenant admins may only toggle their own rules, never global templates.
    if target is None or (target.tenant_id is None and accessor.accessor_type != AccessorType.PLATFORM_ADMIN):
        raise NotFoundError("Masking rule not found", details={"rule_id": rule_id})
    rule = unwrap(await core.masking.set_rule_enabled(rule_id, payload.is_enabled))
    return success_response(request=request, data=MaskingRuleResponse.model_validate(rule))

