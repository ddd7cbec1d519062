from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Awaitable, Callable, Mapping, MutableMapping

from fastapi import Request
from fastapi.responses import JSONResponse

from privacycore.apps.api.deps import Accessor, resolve_accessor
from privacycore.apps.api.response import privacy_error_response
from privacycore.core.errors import AccessReasonRequiredError, InvalidAccessReasonError, PrivacyCoreError
from privacycore.domain.enums import AccessReason, AccessType, DataCategory
from privacycore.services.access_audit import AccessLogParams
from privacycore.services.context import PrivacyCore


logger = logging.getLogger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


@dataclass(frozen=True)
class SensitiveRoute:
    data_category: DataCategory
    resource_type: str
    require_reason: bool = False


SENSITIVE_ROUTES: dict[str, SensitiveRoute] = {
    "/api/patients": SensitiveRoute(DataCategory.PHI, "patient", True),
    "/api/emr": SensitiveRoute(DataCategory.PHI, "emr", True),
    "/api/medical-records": SensitiveRoute(DataCategory.PHI, "medical_record", True),
    "/api/prescriptions": SensitiveRoute(DataCategory.PHI, "prescription", True),
    "/api/diagnoses": SensitiveRoute(DataCategory.PHI, "diagnosis", True),
    "/api/customers": SensitiveRoute(DataCategory.PII, "customer"),
    "/api/users": SensitiveRoute(DataCategory.PII, "user"),
    "/api/contacts": SensitiveRoute(DataCategory.PII, "contact"),
    "/api/payments": SensitiveRoute(DataCategory.FINANCIAL, "payment"),
    "/api/invoices": SensitiveRoute(DataCategory.FINANCIAL, "invoice"),
    "/api/subscriptions": SensitiveRoute(DataCategory.FINANCIAL, "subscription"),
    "/api/billing": SensitiveRoute(DataCategory.FINANCIAL, "billing"),
    "/api/platform-admin/tenants": SensitiveRoute(DataCategory.PII, "tenant"),
    "/api/platform-admin/users": SensitiveRoute(DataCategory.PII, "user", True),
}

# Single-resource paths that always require a reason, whatever the table says.
REQUIRE_REASON_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/api/patients/[^/]+$"),
    re.compile(r"/api/emr/[^/]+$"),
    re.compile(r"/api/medical-records/[^/]+$"),
    re.compile(r"/api/platform-admin/users/[^/]+$"),
)

LOGGED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})
DEFAULT_ACCESS_REASON = AccessReason.SYSTEM_MAINTENANCE

_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_NUMERIC = re.compile(r"^\d+$")
_METHOD_ACCESS_TYPES = {
    "GET": AccessType.VIEW,
    "POST": AccessType.MODIFY,
    "PUT": AccessType.MODIFY,
    "PATCH": AccessType.MODIFY,
    "DELETE": AccessType.DELETE,
}


def find_route_config(path: str, routes: Mapping[str, SensitiveRoute] = SENSITIVE_ROUTES) -> SensitiveRoute | None:
    for prefix, config in routes.items():
        if path == prefix or path.startswith(prefix + "/"):
            return config
    return None


def requires_reason(
    path: str,
    config: SensitiveRoute,
    patterns: tuple[re.Pattern[str], ...] = REQUIRE_REASON_PATTERNS,
) -> bool:
    return config.require_reason or any(pattern.search(path) for pattern in patterns)


def extract_resource_id(path: str) -> str | None:
    # Scan from the end for the first UUID-shaped or numeric segment.
    for segment in reversed([part for part in path.split("/") if part]):
        if _UUID.match(segment) or _NUMERIC.match(segment):
            return segment
    return None


def access_type_for_method(method: str) -> AccessType:
    return _METHOD_ACCESS_TYPES.get(method.upper(), AccessType.VIEW)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def fields_accessed(method: str, query_fields: str | None, body: bytes) -> list[str]:
    # GET declares fields via ?fields=a,b; mutations touch the body's top-level keys.
    if method.upper() == "GET" and query_fields:
        return [name.strip() for name in query_fields.split(",") if name.strip()]
    if not body:
        return []
    try:
        payload = json.loads(body)
    except ValueError:
        return []
    if isinstance(payload, dict):
        return [str(key) for key in payload]
    return []


def parse_access_reason(raw: str | None, *, header: str) -> AccessReason | None:
    """Parse the access reason header; None when the header is absent.

    Unknown values are rejected rather than defaulted.
    """
    if raw is None or not raw.strip():
        return None
    try:
        return AccessReason(raw.strip())
    except ValueError as exc:
        raise InvalidAccessReasonError(
            "Invalid access reason",
            details={"header": header, "valid_reasons": [reason.value for reason in AccessReason]},
        ) from exc


def _reason_required_error(header: str) -> AccessReasonRequiredError:
    valid = [reason.value for reason in AccessReason]
    return AccessReasonRequiredError(
        "Access reason required for PHI access",
        details={
            "header": header,
            "valid_reasons": valid,
            "hint": f"Include {header} header with one of: {', '.join(valid)}",
        },
    )


async def _buffer_body(receive: Receive) -> tuple[bytes, Receive]:
    # Read the whole request body once and replay it to the downstream app.
    chunks: list[bytes] = []
    messages: list[Message] = []
    more_body = True
    while more_body:
        message = await receive()
        messages.append(message)
        if message["type"] != "http.request":
            break
        chunks.append(message.get("body", b""))
        more_body = message.get("more_body", False)

    async def replay() -> Message:
        if messages:
            return messages.pop(0)
        return await receive()

    return b"".join(chunks), replay


class SensitiveAccessMiddleware:
    """ASGI adapter that gates and audits access to sensitive routes.

    PHI routes that require a reason reject requests without a valid access
    reason header. Identified accessors get one audit row per request, written
    off the request path unless ``await_logging`` is set.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        core: PrivacyCore | None = None,
        routes: Mapping[str, SensitiveRoute] = SENSITIVE_ROUTES,
        reason_patterns: tuple[re.Pattern[str], ...] = REQUIRE_REASON_PATTERNS,
        await_logging: bool = False,
    ) -> None:
        self.app = app
        self._core = core
        self._routes = routes
        self._reason_patterns = reason_patterns
        self._await_logging = await_logging
        self._pending: set[asyncio.Task[None]] = set()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("method", "").upper() not in LOGGED_METHODS:
            await self.app(scope, receive, send)
            return
        path = scope.get("path", "")
        config = find_route_config(path, self._routes)
        if config is None:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        core = self._resolve_core(scope)
        header = core.settings.access_reason_header
        try:
            reason = parse_access_reason(request.headers.get(header), header=header)
            if (
                reason is None
                and config.data_category == DataCategory.PHI
                and requires_reason(path, config, self._reason_patterns)
            ):
                raise _reason_required_error(header)
            accessor = resolve_accessor(request, core.settings)
        except PrivacyCoreError as exc:
            logger.info("sensitive_access_rejected path=%s code=%s", path, exc.code)
            response = JSONResponse(
                content=privacy_error_response(request=request, exc=exc),
                status_code=exc.status_code,
            )
            await response(scope, receive, send)
            return

        if accessor is None:
            await self.app(scope, receive, send)
            return

        method = request.method.upper()
        body = b""
        if method != "GET":
            body, receive = await _buffer_body(receive)
        params = AccessLogParams(
            accessor_type=accessor.accessor_type,
            accessor_id=accessor.accessor_id,
            tenant_id=accessor.tenant_id,
            accessor_email=accessor.email,
            accessor_role=accessor.role,
            data_category=config.data_category,
            resource_type=config.resource_type,
            resource_id=extract_resource_id(path) or "unknown",
            fields_accessed=fields_accessed(method, request.query_params.get("fields"), body),
            access_type=access_type_for_method(method),
            access_reason=reason or DEFAULT_ACCESS_REASON,
            reason_details=request.headers.get("x-access-reason-details"),
            ticket_id=request.headers.get("x-support-ticket-id"),
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            session_id=request.headers.get("x-session-id"),
        )
        if self._await_logging:
            await self._record(core, accessor, params)
        else:
            task = asyncio.create_task(self._record(core, accessor, params))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        await self.app(scope, receive, send)

    def _resolve_core(self, scope: Scope) -> PrivacyCore:
        if self._core is not None:
            return self._core
        return scope["app"].state.privacy_core

    async def _record(self, core: PrivacyCore, accessor: Accessor, params: AccessLogParams) -> None:
        # Audit failures never reach the caller, including unexpected ones in background tasks.
        try:
            await self._record_and_check(core, accessor, params)
        except Exception:  # noqa: BLE001 - auditing must not fail the request
            logger.exception(
                "sensitive_access_audit_failed accessor_id=%s resource_type=%s",
                accessor.accessor_id,
                params.resource_type,
            )

    async def _record_and_check(self, core: PrivacyCore, accessor: Accessor, params: AccessLogParams) -> None:
        logged = await core.audit.log_sensitive_access(params)
        if not logged.ok:
            return
        check = await core.audit.detect_unusual_access(accessor.accessor_id, accessor.tenant_id)
        if not check.ok:
            return
        report = check.value
        if report.is_unusual and report.risk_score >= core.settings.anomaly_warn_score:
            logger.warning(
                "unusual_access_detected accessor_id=%s tenant_id=%s risk_score=%s reasons=%s",
                accessor.accessor_id,
                accessor.tenant_id,
                report.risk_score,
                "; ".join(report.reasons),
            )

    async def drain(self) -> None:
        # Wait for in-flight audit writes, e.g. on shutdown.
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
