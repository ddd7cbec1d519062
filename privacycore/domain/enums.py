from __future__ import annotations

from enum import Enum
from typing import TypeVar

from privacycore.core.errors import InvalidEnumValueError


class DataCategory(str, Enum):
    PII = "pii"
    PHI = "phi"
    FINANCIAL = "financial"
    BIOMETRIC = "biometric"
    LOCATION = "location"
    AUTHENTICATION = "authentication"


class AccessorType(str, Enum):
    USER = "user"
    ADMIN = "admin"
    PLATFORM_ADMIN = "platform_admin"
    SYSTEM = "system"


class AccessType(str, Enum):
    VIEW = "view"
    EXPORT = "export"
    MODIFY = "modify"
    DELETE = "delete"


class AccessReason(str, Enum):
    CUSTOMER_REQUEST = "customer_request"
    SUPPORT_TICKET = "support_ticket"
    COMPLIANCE_AUDIT = "compliance_audit"
    LEGAL_REQUIREMENT = "legal_requirement"
    SYSTEM_MAINTENANCE = "system_maintenance"
    DEBUGGING = "debugging"
    AUTHORIZED_INVESTIGATION = "authorized_investigation"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MaskingType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    HASH = "hash"
    REDACT = "redact"
    TOKENIZE = "tokenize"


class ConsentType(str, Enum):
    MARKETING = "marketing"
    DATA_PROCESSING = "data_processing"
    DATA_SHARING = "data_sharing"
    PROFILING = "profiling"
    CROSS_BORDER_TRANSFER = "cross_border_transfer"
    HEALTH_DATA = "health_data"
    BIOMETRIC = "biometric"
    LOCATION_TRACKING = "location_tracking"


class ConsentStatus(str, Enum):
    GRANTED = "granted"
    WITHDRAWN = "withdrawn"


class Regulation(str, Enum):
    GDPR = "gdpr"
    PDPA_SG = "pdpa_sg"
    PDPA_MY = "pdpa_my"
    DPDP = "dpdp"
    UAE_DPL = "uae_dpl"


class DsarRequestType(str, Enum):
    ACCESS = "access"
    RECTIFICATION = "rectification"
    ERASURE = "erasure"
    PORTABILITY = "portability"
    RESTRICTION = "restriction"
    OBJECTION = "objection"


class DsarStatus(str, Enum):
    SUBMITTED = "submitted"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class BreachSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class BreachStatus(str, Enum):
    INVESTIGATING = "investigating"
    CONTAINED = "contained"
    REPORTED = "reported"
    RESOLVED = "resolved"


class ItemPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ProgressStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NOT_APPLICABLE = "not_applicable"
    OVERDUE = "overdue"


class PackAssignmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: type[E], value: str | E) -> E:
    # Reject unknown values at the boundary instead of defaulting silently.
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = [member.value for member in enum_cls]
        raise InvalidEnumValueError(
            f"Invalid {enum_cls.__name__} value: {value!r}",
            details={"field": enum_cls.__name__, "allowed": allowed},
        ) from exc
