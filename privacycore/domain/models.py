from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class UtcDateTime(TypeDecorator):
    # Normalize to aware UTC on both sides; SQLite drops tzinfo on storage.
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class MaskingRule(Base):
    __tablename__ = "data_masking_rules"
    __table_args__ = (
        Index("ix_data_masking_rules_scope", "tenant_id", "role_name", "is_enabled"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Null tenant_id/role_name mean global rule / any role.
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    role_name: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_type: Mapped[str] = mapped_column(String, index=True)
    field_name: Mapped[str] = mapped_column(String)
    masking_type: Mapped[str] = mapped_column(String, default="partial")
    masking_pattern: Mapped[str | None] = mapped_column(String, nullable=True)
    preserve_length: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Higher priority wins when several rules match the same field.
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class SensitiveDataAccessLog(Base):
    __tablename__ = "sensitive_data_access_logs"
    __table_args__ = (
        Index("ix_sensitive_access_accessor_created", "accessor_id", "created_at"),
        Index("ix_sensitive_access_tenant_created", "tenant_id", "created_at"),
    )

    # Append-only; only the review columns are ever patched.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    # Null tenant for platform/system contexts.
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    accessor_type: Mapped[str] = mapped_column(String)
    accessor_id: Mapped[str] = mapped_column(String)
    accessor_email: Mapped[str | None] = mapped_column(String, nullable=True)
    accessor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    data_category: Mapped[str] = mapped_column(String, index=True)
    resource_type: Mapped[str] = mapped_column(String)
    resource_id: Mapped[str] = mapped_column(String)
    fields_accessed: Mapped[list[str]] = mapped_column(JsonType, default=list)
    access_type: Mapped[str] = mapped_column(String)
    access_reason: Mapped[str] = mapped_column(String)
    reason_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    ticket_id: Mapped[str | None] = mapped_column(String, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    risk_level: Mapped[str] = mapped_column(String, index=True)
    was_data_masked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    flagged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)


class ConsentRecord(Base):
    __tablename__ = "consent_records"
    __table_args__ = (
        # Store-enforced "at most one granted row per consent key".
        Index(
            "uq_consent_records_granted_key",
            "tenant_id",
            "subject_type",
            "subject_id",
            "consent_type",
            unique=True,
            postgresql_where=text("status = 'granted'"),
            sqlite_where=text("status = 'granted'"),
        ),
        Index("ix_consent_records_subject", "tenant_id", "subject_type", "subject_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String)
    subject_type: Mapped[str] = mapped_column(String)
    subject_id: Mapped[str] = mapped_column(String)
    subject_email: Mapped[str | None] = mapped_column(String, nullable=True)
    consent_type: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String)
    purpose: Mapped[str] = mapped_column(Text)
    legal_basis: Mapped[str | None] = mapped_column(String, nullable=True)
    # Snapshot of the consent wording the subject agreed to.
    consent_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[str | None] = mapped_column(String, nullable=True)
    granted_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    expires_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    withdrawal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    collection_method: Mapped[str | None] = mapped_column(String, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class DsarRequest(Base):
    __tablename__ = "dsar_requests"
    __table_args__ = (
        Index("ix_dsar_requests_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String)
    request_type: Mapped[str] = mapped_column(String)
    subject_email: Mapped[str] = mapped_column(String, index=True)
    subject_name: Mapped[str | None] = mapped_column(String, nullable=True)
    subject_phone: Mapped[str | None] = mapped_column(String, nullable=True)
    subject_id_type: Mapped[str | None] = mapped_column(String, nullable=True)
    subject_id_number: Mapped[str | None] = mapped_column(String, nullable=True)
    request_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_categories: Mapped[list[str]] = mapped_column(JsonType, default=list)
    regulation: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    response_deadline: Mapped[datetime] = mapped_column(UtcDateTime)
    acknowledged_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class DsarActivityLog(Base):
    __tablename__ = "dsar_activity_log"
    __table_args__ = (
        UniqueConstraint("dsar_id", "sequence", name="uq_dsar_activity_sequence"),
    )

    # Append-only trail; sequence orders entries written within the same clock tick.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    dsar_id: Mapped[str] = mapped_column(String, ForeignKey("dsar_requests.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer)
    action: Mapped[str] = mapped_column(String)
    previous_status: Mapped[str | None] = mapped_column(String, nullable=True)
    new_status: Mapped[str | None] = mapped_column(String, nullable=True)
    performed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    performed_by_email: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)


class DataBreachRecord(Base):
    __tablename__ = "data_breach_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    breach_type: Mapped[str] = mapped_column(String)
    severity: Mapped[str] = mapped_column(String, index=True)
    regulation: Mapped[str | None] = mapped_column(String, nullable=True)
    discovered_at: Mapped[datetime] = mapped_column(UtcDateTime)
    occurred_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    report_deadline: Mapped[datetime] = mapped_column(UtcDateTime)
    affected_data_categories: Mapped[list[str]] = mapped_column(JsonType, default=list)
    affected_subjects_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    impact_assessment: Mapped[str | None] = mapped_column(Text, nullable=True)
    containment_actions: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class CompliancePack(Base):
    __tablename__ = "compliance_packs"

    # Reusable checklist template; empty applicability lists apply everywhere.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    code: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    regulation: Mapped[str] = mapped_column(String, index=True)
    applicable_countries: Mapped[list[str]] = mapped_column(JsonType, default=list)
    applicable_business_types: Mapped[list[str]] = mapped_column(JsonType, default=list)
    version: Mapped[str] = mapped_column(String, default="1.0")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Cache of count(items where pack_id = id); maintained by item mutators.
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class ComplianceChecklistItem(Base):
    __tablename__ = "compliance_checklist_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    pack_id: Mapped[str] = mapped_column(String, ForeignKey("compliance_packs.id"), index=True)
    category: Mapped[str] = mapped_column(String)
    title: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String, default="medium")
    is_mandatory: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    evidence_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    evidence_types: Mapped[list[str]] = mapped_column(JsonType, default=list)
    due_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class TenantCompliancePack(Base):
    __tablename__ = "tenant_compliance_packs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "pack_id", name="uq_tenant_compliance_packs_pair"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    pack_id: Mapped[str] = mapped_column(String, ForeignKey("compliance_packs.id"), index=True)
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    due_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    status: Mapped[str] = mapped_column(String, default="active")
    # Derived from progress rows; only the roll-up writes it.
    completion_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class TenantComplianceProgress(Base):
    __tablename__ = "tenant_compliance_progress"
    __table_args__ = (
        UniqueConstraint("tenant_id", "pack_id", "item_id", name="uq_tenant_compliance_progress_item"),
        Index("ix_tenant_compliance_progress_pack", "tenant_id", "pack_id"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(String)
    pack_id: Mapped[str] = mapped_column(String, ForeignKey("compliance_packs.id"))
    item_id: Mapped[str] = mapped_column(String, ForeignKey("compliance_checklist_items.id"))
    status: Mapped[str] = mapped_column(String, default="not_started")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_url: Mapped[str | None] = mapped_column(String, nullable=True)
    evidence_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class TenantComplianceSettings(Base):
    __tablename__ = "tenant_compliance_settings"

    tenant_id: Mapped[str] = mapped_column(String, primary_key=True)
    primary_regulation: Mapped[str] = mapped_column(String, default="gdpr")
    additional_regulations: Mapped[list[str]] = mapped_column(JsonType, default=list)
    dpo_name: Mapped[str | None] = mapped_column(String, nullable=True)
    dpo_email: Mapped[str | None] = mapped_column(String, nullable=True)
    data_residency_region: Mapped[str | None] = mapped_column(String, nullable=True)
    breach_notification_email: Mapped[str | None] = mapped_column(String, nullable=True)
    masking_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    access_logging_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    dsar_auto_acknowledge: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)


class ComplianceConfig(Base):
    __tablename__ = "compliance_configs"

    # Global, read-only regulation reference data shared by every tenant.
    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    regulation: Mapped[str] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String)
    jurisdiction: Mapped[str | None] = mapped_column(String, nullable=True)
    dsar_response_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    breach_notification_hours: Mapped[int] = mapped_column(Integer, default=72, nullable=False)
    requires_dpo: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    config_json: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, default=_utc_now, onupdate=_utc_now)
