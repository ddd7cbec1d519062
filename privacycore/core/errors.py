from __future__ import annotations

from typing import Any


class PrivacyCoreError(Exception):
    """Base error for the privacy and compliance core."""

    code = "PRIVACY_CORE_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class StoreUnavailableError(PrivacyCoreError):
    """Relational store failure (connectivity, constraint, driver error)."""

    code = "STORE_UNAVAILABLE"
    status_code = 503


class NotFoundError(PrivacyCoreError):
    """Referenced row does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(PrivacyCoreError):
    """Operation conflicts with existing state."""

    code = "CONFLICT"
    status_code = 409


class PackAlreadyAssignedError(ConflictError):
    """Compliance pack is already assigned to the tenant."""

    code = "PACK_ALREADY_ASSIGNED"


class PolicyViolationError(PrivacyCoreError):
    """Request violates a privacy policy."""

    code = "POLICY_VIOLATION"
    status_code = 400


class AccessReasonRequiredError(PolicyViolationError):
    """Sensitive route requires an enumerated access reason."""

    code = "ACCESS_REASON_REQUIRED"


class IllegalTransitionError(PolicyViolationError):
    """DSAR status change not permitted from the current status."""

    code = "DSAR_ILLEGAL_TRANSITION"
    status_code = 409


class InvalidEnumValueError(PrivacyCoreError):
    """Value outside a closed enumeration."""

    code = "INVALID_ENUM_VALUE"
    status_code = 422


class InvalidAccessReasonError(PolicyViolationError):
    """Access reason header names a value outside the enumeration."""

    code = "INVALID_ACCESS_REASON"
