from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from privacycore.core.config import Settings
from privacycore.core.result import Result, T
from privacycore.domain.enums import AccessorType, parse_enum
from privacycore.services.context import PrivacyCore


ANONYMOUS_ROLE = "anonymous"
_ADMIN_TYPES = frozenset({AccessorType.ADMIN, AccessorType.PLATFORM_ADMIN})


class Accessor(BaseModel):
    # Identity already resolved by upstream authentication; the core never authenticates.
    accessor_id: str
    accessor_type: AccessorType = AccessorType.USER
    tenant_id: str | None = None
    email: str | None = None
    role: str | None = None

    @property
    def masking_role(self) -> str:
        return self.role or ANONYMOUS_ROLE


def get_core(request: Request) -> PrivacyCore:
    # The service context is created once in create_app and stored on app state.
    return request.app.state.privacy_core


def _accessor_from_dev_headers(request: Request) -> Accessor | None:
    # Header identities are honored only when explicitly enabled for local dev and tests.
    accessor_id = request.headers.get("X-Accessor-Id")
    if not accessor_id:
        return None
    return Accessor(
        accessor_id=accessor_id,
        accessor_type=parse_enum(AccessorType, request.headers.get("X-Accessor-Type", AccessorType.USER.value)),
        tenant_id=request.headers.get("X-Tenant-Id"),
        email=request.headers.get("X-Accessor-Email"),
        role=request.headers.get("X-Role"),
    )


def resolve_accessor(request: Request, settings: Settings) -> Accessor | None:
    """Return the accessor for ``request`` or None when the caller is unidentified.

    Upstream auth middleware publishes the identity on ``request.state.accessor``;
    a bearer API token without a user maps to the system accessor.
    """
    accessor = getattr(request.state, "accessor", None)
    if isinstance(accessor, Accessor):
        return accessor
    if settings.auth_dev_bypass:
        accessor = _accessor_from_dev_headers(request)
        if accessor is not None:
            return accessor
    authorization = request.headers.get("authorization") or ""
    if authorization.startswith("Bearer api_"):
        return Accessor(accessor_id="api_token", accessor_type=AccessorType.SYSTEM)
    return None


def get_accessor(request: Request, core: PrivacyCore = Depends(get_core)) -> Accessor:
    accessor = resolve_accessor(request, core.settings)
    if accessor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Accessor identity is required"},
        )
    return accessor


def require_tenant(accessor: Accessor = Depends(get_accessor)) -> str:
    if not accessor.tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "TENANT_REQUIRED", "message": "Tenant context is required"},
        )
    return accessor.tenant_id


def require_admin(accessor: Accessor = Depends(get_accessor)) -> Accessor:
    if accessor.accessor_type not in _ADMIN_TYPES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "AUTH_FORBIDDEN", "message": "Admin access is required"},
        )
    return accessor


def require_platform_admin(accessor: Accessor = Depends(get_accessor)) -> Accessor:
    # Global templates (packs, items, seeding) are platform-owned.
    if accessor.accessor_type != AccessorType.PLATFORM_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "AUTH_FORBIDDEN", "message": "Platform admin access is required"},
        )
    return accessor


def unwrap(result: Result[T]) -> T:
    # Err re-raises its typed error, which the app renders into the error envelope.
    return result.unwrap()