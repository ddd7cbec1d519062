from __future__ import annotations

from dataclasses import dataclass

from privacycore.domain.enums import ItemPriority, Regulation


@dataclass(frozen=True)
class ChecklistItemDefinition:
    category: str
    title: str
    description: str
    guidance: str | None = None
    priority: ItemPriority = ItemPriority.MEDIUM
    is_mandatory: bool = True
    evidence_required: bool = False
    evidence_types: tuple[str, ...] = ()
    due_days: int | None = None


@dataclass(frozen=True)
class PackDefinition:
    code: str
    name: str
    description: str
    regulation: Regulation
    applicable_countries: tuple[str, ...]
    items: tuple[ChecklistItemDefinition, ...]
    version: str = "1.0"
    is_default: bool = True


# Shared baseline every regulation-specific pack starts from.
CORE_ITEMS: tuple[ChecklistItemDefinition, ...] = (
    ChecklistItemDefinition(
        category="governance",
        title="Maintain a record of processing activities",
        description="Document what personal data is processed, why, where it is stored and who can access it.",
        guidance="Keep the register current whenever a new system or vendor is onboarded.",
        priority=ItemPriority.HIGH,
        evidence_required=True,
        evidence_types=("document",),
        due_days=30,
    ),
    ChecklistItemDefinition(
        category="governance",
        title="Publish a privacy notice",
        description="Provide data subjects with a clear notice of processing purposes and their rights.",
        priority=ItemPriority.HIGH,
        evidence_required=True,
        evidence_types=("url", "document"),
        due_days=14,
    ),
    ChecklistItemDefinition(
        category="security",
        title="Enforce role-based access to personal data",
        description="Restrict access to sensitive fields by role and log every sensitive access.",
        priority=ItemPriority.CRITICAL,
        evidence_required=True,
        evidence_types=("screenshot", "report"),
        due_days=21,
    ),
    ChecklistItemDefinition(
        category="security",
        title="Define an incident response procedure",
        description="Document how personal data breaches are detected, assessed, contained and reported.",
        priority=ItemPriority.HIGH,
        evidence_required=True,
        evidence_types=("document",),
        due_days=30,
    ),
    ChecklistItemDefinition(
        category="rights",
        title="Handle data subject requests",
        description="Provide a channel for access, correction and deletion requests and track them to completion.",
        priority=ItemPriority.HIGH,
        due_days=30,
    ),
    ChecklistItemDefinition(
        category="training",
        title="Train staff on data protection",
        description="Run privacy awareness training for staff handling personal data.",
        priority=ItemPriority.MEDIUM,
        is_mandatory=False,
        evidence_required=True,
        evidence_types=("attendance_record",),
        due_days=60,
    ),
)


_GDPR_ITEMS: tuple[ChecklistItemDefinition, ...] = (
    ChecklistItemDefinition(
        category="governance",
        title="Document the lawful basis for each processing purpose",
        description="Record which Article 6 basis applies to every processing activity.",
        priority=ItemPriority.CRITICAL,
        evidence_required=True,
        evidence_types=("document",),
        due_days=30,
    ),
    ChecklistItemDefinition(
        category="governance",
        title="Run data protection impact assessments",
        description="Assess high-risk processing before it starts.",
        priority=ItemPriority.HIGH,
        evidence_required=True,
        evidence_types=("document",),
        due_days=45,
    ),
    ChecklistItemDefinition(
        category="transfers",
        title="Put safeguards on transfers outside the EEA",
        description="Use adequacy decisions or standard contractual clauses for cross-border transfers.",
        priority=ItemPriority.HIGH,
        evidence_required=True,
        evidence_types=("contract",),
    ),
    ChecklistItemDefinition(
        category="security",
        title="Notify the supervisory authority within 72 hours",
        description="Report qualifying breaches to the lead authority without undue delay.",
        priority=ItemPriority.CRITICAL,
    ),
)

_PDPA_SG_ITEMS: tuple[ChecklistItemDefinition, ...] = (
    ChecklistItemDefinition(
        category="governance",
        title="Appoint a Data Protection Officer",
        description="Designate and publish business contact details of the DPO.",
        priority=ItemPriority.CRITICAL,
        evidence_required=True,
        evidence_types=("document",),
        due_days=14,
    ),
    ChecklistItemDefinition(
        category="consent",
        title="Check the Do Not Call registry before marketing",
        description="Screen Singapore phone numbers against the DNC registry before telemarketing.",
        priority=ItemPriority.HIGH,
    ),
    ChecklistItemDefinition(
        category="security",
        title="Notify the PDPC of notifiable breaches within 3 days",
        description="Assess breaches and notify the commission and affected individuals where required.",
        priority=ItemPriority.CRITICAL,
    ),
)

_DPDP_ITEMS: tuple[ChecklistItemDefinition, ...] = (
    ChecklistItemDefinition(
        category="consent",
        title="Collect itemised consent through a consent manager",
        description="Obtain free, specific and informed consent with an itemised notice in the user's language.",
        priority=ItemPriority.CRITICAL,
        evidence_required=True,
        evidence_types=("screenshot",),
        due_days=30,
    ),
    ChecklistItemDefinition(
        category="rights",
        title="Set up grievance redressal",
        description="Publish a grievance officer contact and respond to grievances within the prescribed period.",
        priority=ItemPriority.HIGH,
    ),
    ChecklistItemDefinition(
        category="consent",
        title="Obtain verifiable parental consent for children",
        description="Verify guardian consent before processing personal data of children.",
        priority=ItemPriority.HIGH,
        is_mandatory=False,
    ),
)

_UAE_DPL_ITEMS: tuple[ChecklistItemDefinition, ...] = (
    ChecklistItemDefinition(
        category="transfers",
        title="Assess cross-border transfers",
        description="Confirm the destination country offers adequate protection before transferring data.",
        priority=ItemPriority.HIGH,
        evidence_required=True,
        evidence_types=("document",),
    ),
    ChecklistItemDefinition(
        category="governance",
        title="Keep a record of processing for the data office",
        description="Maintain records in the form required by the UAE Data Office.",
        priority=ItemPriority.HIGH,
        due_days=30,
    ),
)


DEFAULT_PACKS: tuple[PackDefinition, ...] = (
    PackDefinition(
        code="GDPR",
        name="GDPR Compliance",
        description="General Data Protection Regulation checklist for EU/EEA operations.",
        regulation=Regulation.GDPR,
        applicable_countries=(),
        items=CORE_ITEMS + _GDPR_ITEMS,
    ),
    PackDefinition(
        code="PDPA_SG",
        name="PDPA Singapore Compliance",
        description="Personal Data Protection Act checklist for Singapore.",
        regulation=Regulation.PDPA_SG,
        applicable_countries=("SG",),
        items=CORE_ITEMS + _PDPA_SG_ITEMS,
    ),
    PackDefinition(
        code="DPDP",
        name="DPDP India Compliance",
        description="Digital Personal Data Protection Act checklist for India.",
        regulation=Regulation.DPDP,
        applicable_countries=("IN",),
        items=CORE_ITEMS + _DPDP_ITEMS,
    ),
    PackDefinition(
        code="UAE_DPL",
        name="UAE Data Protection Compliance",
        description="Federal data protection law checklist for the United Arab Emirates.",
        regulation=Regulation.UAE_DPL,
        applicable_countries=("AE",),
        items=CORE_ITEMS + _UAE_DPL_ITEMS,
    ),
)


@dataclass(frozen=True)
class RegulationConfigDefinition:
    regulation: Regulation
    name: str
    jurisdiction: str
    dsar_response_days: int
    breach_notification_hours: int
    requires_dpo: bool


# Global reference data; tenants read these but never edit them.
REGULATION_CONFIGS: tuple[RegulationConfigDefinition, ...] = (
    RegulationConfigDefinition(Regulation.GDPR, "General Data Protection Regulation", "EU/EEA", 30, 72, True),
    RegulationConfigDefinition(Regulation.PDPA_SG, "Personal Data Protection Act", "Singapore", 30, 72, True),
    RegulationConfigDefinition(Regulation.PDPA_MY, "Personal Data Protection Act", "Malaysia", 21, 72, False),
    RegulationConfigDefinition(Regulation.DPDP, "Digital Personal Data Protection Act", "India", 30, 72, False),
    RegulationConfigDefinition(Regulation.UAE_DPL, "Federal Data Protection Law", "United Arab Emirates", 30, 72, False),
)
