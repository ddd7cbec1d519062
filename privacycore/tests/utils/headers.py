from __future__ import annotations


def accessor_headers(
    accessor_id: str,
    *,
    tenant_id: str | None = "t1",
    accessor_type: str = "user",
    role: str | None = None,
    email: str | None = None,
    reason: str | None = None,
) -> dict[str, str]:
    # Dev-bypass identity headers understood when AUTH_DEV_BYPASS is on.
    headers = {"X-Accessor-Id": accessor_id, "X-Accessor-Type": accessor_type}
    if tenant_id:
        headers["X-Tenant-Id"] = tenant_id
    if role:
        headers["X-Role"] = role
    if email:
        headers["X-Accessor-Email"] = email
    if reason:
        headers["X-Access-Reason"] = reason
    return headers


def admin_headers(accessor_id: str = "admin-1", *, tenant_id: str | None = "t1", **kwargs: str) -> dict[str, str]:
    return accessor_headers(accessor_id, tenant_id=tenant_id, accessor_type="admin", **kwargs)


def platform_admin_headers(accessor_id: str = "platform-1", **kwargs: str) -> dict[str, str]:
    return accessor_headers(accessor_id, tenant_id=None, accessor_type="platform_admin", **kwargs)
