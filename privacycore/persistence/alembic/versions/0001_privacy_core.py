"""privacy core

Revision ID: 0001_privacy_core
Revises: 
Create Date: 2026-10-18 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_privacy_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "data_masking_rules",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("role_name", sa.String(), nullable=True),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("field_name", sa.String(), nullable=False),
        sa.Column("masking_type", sa.String(), nullable=False, server_default="partial"),
        sa.Column("masking_pattern", sa.String(), nullable=True),
        sa.Column("preserve_length", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_data_masking_rules_tenant_id", "data_masking_rules", ["tenant_id"])
    op.create_index("ix_data_masking_rules_resource_type", "data_masking_rules", ["resource_type"])
    op.create_index(
        "ix_data_masking_rules_scope",
        "data_masking_rules",
        ["tenant_id", "role_name", "is_enabled"],
    )

    op.create_table(
        "sensitive_data_access_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("accessor_type", sa.String(), nullable=False),
        sa.Column("accessor_id", sa.String(), nullable=False),
        sa.Column("accessor_email", sa.String(), nullable=True),
        sa.Column("accessor_role", sa.String(), nullable=True),
        sa.Column("data_category", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=False),
        sa.Column("fields_accessed", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("access_type", sa.String(), nullable=False),
        sa.Column("access_reason", sa.String(), nullable=False),
        sa.Column("reason_details", sa.Text(), nullable=True),
        sa.Column("ticket_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("risk_level", sa.String(), nullable=False),
        sa.Column("was_data_masked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("flagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("flag_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Accessor/time and tenant/time back the anomaly windows and the review listing.
    op.create_index(
        "ix_sensitive_access_accessor_created",
        "sensitive_data_access_logs",
        ["accessor_id", "created_at"],
    )
    op.create_index(
        "ix_sensitive_access_tenant_created",
        "sensitive_data_access_logs",
        ["tenant_id", "created_at"],
    )
    op.create_index(
        "ix_sensitive_data_access_logs_data_category", "sensitive_data_access_logs", ["data_category"]
    )
    op.create_index("ix_sensitive_data_access_logs_risk_level", "sensitive_data_access_logs", ["risk_level"])
    op.create_index("ix_sensitive_data_access_logs_flagged", "sensitive_data_access_logs", ["flagged"])

    op.create_table(
        "consent_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("subject_type", sa.String(), nullable=False),
        sa.Column("subject_id", sa.String(), nullable=False),
        sa.Column("subject_email", sa.String(), nullable=True),
        sa.Column("consent_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("legal_basis", sa.String(), nullable=True),
        sa.Column("consent_text", sa.Text(), nullable=True),
        sa.Column("version", sa.String(), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawal_reason", sa.Text(), nullable=True),
        sa.Column("collection_method", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_consent_records_subject",
        "consent_records",
        ["tenant_id", "subject_type", "subject_id"],
    )
    # At most one granted row per consent key; history rows keep other statuses.
    op.create_index(
        "uq_consent_records_granted_key",
        "consent_records",
        ["tenant_id", "subject_type", "subject_id", "consent_type"],
        unique=True,
        postgresql_where=sa.text("status = 'granted'"),
    )

    op.create_table(
        "dsar_requests",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("request_type", sa.String(), nullable=False),
        sa.Column("subject_email", sa.String(), nullable=False),
        sa.Column("subject_name", sa.String(), nullable=True),
        sa.Column("subject_phone", sa.String(), nullable=True),
        sa.Column("subject_id_type", sa.String(), nullable=True),
        sa.Column("subject_id_number", sa.String(), nullable=True),
        sa.Column("request_details", sa.Text(), nullable=True),
        sa.Column("data_categories", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("regulation", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("response_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_dsar_requests_tenant_created", "dsar_requests", ["tenant_id", "created_at"])
    op.create_index("ix_dsar_requests_subject_email", "dsar_requests", ["subject_email"])
    op.create_index("ix_dsar_requests_status", "dsar_requests", ["status"])

    op.create_table(
        "dsar_activity_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("dsar_id", sa.String(), sa.ForeignKey("dsar_requests.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("previous_status", sa.String(), nullable=True),
        sa.Column("new_status", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("performed_by_email", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("dsar_id", "sequence", name="uq_dsar_activity_sequence"),
    )
    op.create_index("ix_dsar_activity_log_dsar_id", "dsar_activity_log", ["dsar_id"])

    op.create_table(
        "data_breach_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("breach_type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("regulation", sa.String(), nullable=True),
        sa.Column("discovered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("report_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "affected_data_categories",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("affected_subjects_count", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("impact_assessment", sa.Text(), nullable=True),
        sa.Column("containment_actions", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_data_breach_records_tenant_id", "data_breach_records", ["tenant_id"])
    op.create_index("ix_data_breach_records_severity", "data_breach_records", ["severity"])
    op.create_index("ix_data_breach_records_status", "data_breach_records", ["status"])

    op.create_table(
        "compliance_packs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("regulation", sa.String(), nullable=False),
        sa.Column(
            "applicable_countries",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "applicable_business_types",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("version", sa.String(), nullable=False, server_default="1.0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("total_items", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_compliance_packs_regulation", "compliance_packs", ["regulation"])

    op.create_table(
        "compliance_checklist_items",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("pack_id", sa.String(), sa.ForeignKey("compliance_packs.id"), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("guidance", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(), nullable=False, server_default="medium"),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("evidence_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("evidence_types", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("due_days", sa.Integer(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_compliance_checklist_items_pack_id", "compliance_checklist_items", ["pack_id"])

    op.create_table(
        "tenant_compliance_packs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("pack_id", sa.String(), sa.ForeignKey("compliance_packs.id"), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("completion_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "pack_id", name="uq_tenant_compliance_packs_pair"),
    )
    op.create_index("ix_tenant_compliance_packs_tenant_id", "tenant_compliance_packs", ["tenant_id"])
    op.create_index("ix_tenant_compliance_packs_pack_id", "tenant_compliance_packs", ["pack_id"])

    op.create_table(
        "tenant_compliance_progress",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("pack_id", sa.String(), sa.ForeignKey("compliance_packs.id"), nullable=False),
        sa.Column("item_id", sa.String(), sa.ForeignKey("compliance_checklist_items.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="not_started"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("evidence_url", sa.String(), nullable=True),
        sa.Column("evidence_description", sa.Text(), nullable=True),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "pack_id", "item_id", name="uq_tenant_compliance_progress_item"),
    )
    op.create_index(
        "ix_tenant_compliance_progress_pack",
        "tenant_compliance_progress",
        ["tenant_id", "pack_id"],
    )

    op.create_table(
        "tenant_compliance_settings",
        sa.Column("tenant_id", sa.String(), primary_key=True),
        sa.Column("primary_regulation", sa.String(), nullable=False, server_default="gdpr"),
        sa.Column(
            "additional_regulations",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("dpo_name", sa.String(), nullable=True),
        sa.Column("dpo_email", sa.String(), nullable=True),
        sa.Column("data_residency_region", sa.String(), nullable=True),
        sa.Column("breach_notification_email", sa.String(), nullable=True),
        sa.Column("masking_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("access_logging_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("dsar_auto_acknowledge", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )

    op.create_table(
        "compliance_configs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("regulation", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("jurisdiction", sa.String(), nullable=True),
        sa.Column("dsar_response_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("breach_notification_hours", sa.Integer(), nullable=False, server_default="72"),
        sa.Column("requires_dpo", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("config_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("compliance_configs")
    op.drop_table("tenant_compliance_settings")
    op.drop_index("ix_tenant_compliance_progress_pack", table_name="tenant_compliance_progress")
    op.drop_table("tenant_compliance_progress")
    op.drop_index("ix_tenant_compliance_packs_pack_id", table_name="tenant_compliance_packs")
    op.drop_index("ix_tenant_compliance_packs_tenant_id", table_name="tenant_compliance_packs")
    op.drop_table("tenant_compliance_packs")
    op.drop_index("ix_compliance_checklist_items_pack_id", table_name="compliance_checklist_items")
    op.drop_table("compliance_checklist_items")
    op.drop_index("ix_compliance_packs_regulation", table_name="compliance_packs")
    op.drop_table("compliance_packs")
    op.drop_index("ix_data_breach_records_status", table_name="data_breach_records")
    op.drop_index("ix_data_breach_records_severity", table_name="data_breach_records")
    op.drop_index("ix_data_breach_records_tenant_id", table_name="data_breach_records")
    op.drop_table("data_breach_records")
    op.drop_index("ix_dsar_activity_log_dsar_id", table_name="dsar_activity_log")
    op.drop_table("dsar_activity_log")
    op.drop_index("ix_dsar_requests_status", table_name="dsar_requests")
    op.drop_index("ix_dsar_requests_subject_email", table_name="dsar_requests")
    op.drop_index("ix_dsar_requests_tenant_created", table_name="dsar_requests")
    op.drop_table("dsar_requests")
    op.drop_index("uq_consent_records_granted_key", table_name="consent_records")
    op.drop_index("ix_consent_records_subject", table_name="consent_records")
    op.drop_table("consent_records")
    op.drop_index("ix_sensitive_data_access_logs_flagged", table_name="sensitive_data_access_logs")
    op.drop_index("ix_sensitive_data_access_logs_risk_level", table_name="sensitive_data_access_logs")
    op.drop_index("ix_sensitive_data_access_logs_data_category", table_name="sensitive_data_access_logs")
    op.drop_index("ix_sensitive_access_tenant_created", table_name="sensitive_data_access_logs")
    op.drop_index("ix_sensitive_access_accessor_created", table_name="sensitive_data_access_logs")
    op.drop_table("sensitive_data_access_logs")
    op.drop_index("ix_data_masking_rules_scope", table_name="data_masking_rules")
    op.drop_index("ix_data_masking_rules_resource_type", table_name="data_masking_rules")
    op.drop_index("ix_data_masking_rules_tenant_id", table_name="data_masking_rules")
    op.drop_table("data_masking_rules")
