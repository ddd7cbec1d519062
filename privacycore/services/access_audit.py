from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.config import Settings
from privacycore.core.errors import InvalidEnumValueError, NotFoundError, StoreUnavailableError
from privacycore.core.result import STORE_ERRORS, Err, Ok, Result, store_operation
from privacycore.domain.enums import (
    AccessReason,
    AccessType,
    AccessorType,
    DataCategory,
    RiskLevel,
    parse_enum,
)
from privacycore.domain.models import SensitiveDataAccessLog
from privacycore.persistence.repos import access_logs as access_logs_repo


logger = logging.getLogger(__name__)

HOUR_WINDOW = timedelta(hours=1)
DAY_WINDOW = timedelta(hours=24)

_HOUR_VOLUME_SCORE = 30
_DAY_VOLUME_SCORE = 20
_PHI_BURST_SCORE = 40
_MAX_RISK_SCORE = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessLogParams:
    accessor_type: AccessorType | str
    accessor_id: str
    data_category: DataCategory | str
    resource_type: str
    resource_id: str
    access_type: AccessType | str
    access_reason: AccessReason | str
    tenant_id: str | None = None
    accessor_email: str | None = None
    accessor_role: str | None = None
    fields_accessed: list[str] = field(default_factory=list)
    reason_details: str | None = None
    ticket_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    was_data_masked: bool = False


@dataclass(frozen=True)
class AccessLogPage:
    logs: list[SensitiveDataAccessLog]
    total: int


@dataclass(frozen=True)
class UnusualAccessReport:
    is_unusual: bool
    reasons: list[str]
    risk_score: int
    hour_count: int = 0
    day_count: int = 0
    phi_hour_count: int = 0


def compute_risk_level(
    *,
    data_category: DataCategory,
    access_type: AccessType,
    accessor_type: AccessorType,
) -> RiskLevel:
    # Deterministic tiering: category first, then access kind, then platform-admin PHI override.
    risk = RiskLevel.LOW
    if data_category in (DataCategory.PHI, DataCategory.FINANCIAL):
        risk = RiskLevel.MEDIUM
    if access_type in (AccessType.EXPORT, AccessType.DELETE):
        risk = RiskLevel.HIGH if data_category == DataCategory.PHI else RiskLevel.MEDIUM
    if accessor_type == AccessorType.PLATFORM_ADMIN and data_category == DataCategory.PHI:
        risk = RiskLevel.HIGH
    return risk


def score_unusual_access(
    *,
    hour_count: int,
    day_count: int,
    phi_hour_count: int,
    hour_threshold: int = 50,
    day_threshold: int = 200,
    phi_hour_threshold: int = 10,
) -> UnusualAccessReport:
    reasons: list[str] = []
    score = 0
    if hour_count > hour_threshold:
        reasons.append("High volume of access in the last hour")
        score += _HOUR_VOLUME_SCORE
    if day_count > day_threshold:
        reasons.append("High volume of access in the last 24 hours")
        score += _DAY_VOLUME_SCORE
    if phi_hour_count > phi_hour_threshold:
        reasons.append("Multiple PHI accesses in short period")
        score += _PHI_BURST_SCORE
    return UnusualAccessReport(
        is_unusual=bool(reasons),
        reasons=reasons,
        risk_score=min(score, _MAX_RISK_SCORE),
        hour_count=hour_count,
        day_count=day_count,
        phi_hour_count=phi_hour_count,
    )


class AccessAuditLogger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._session_factory = session_factory
        self._settings = settings

    async def log_sensitive_access(self, params: AccessLogParams) -> Result[str]:
        """Persist one immutable access row and return its id.

        Never raises: the request path must not fail because auditing failed, so
        invalid enum values and store errors are logged and reported as ``Err``.
        """
        try:
            accessor_type = parse_enum(AccessorType, params.accessor_type)
            data_category = parse_enum(DataCategory, params.data_category)
            access_type = parse_enum(AccessType, params.access_type)
            access_reason = parse_enum(AccessReason, params.access_reason)
        except InvalidEnumValueError as exc:
            logger.warning(
                "sensitive_access_rejected accessor_id=%s resource_type=%s field=%s",
                params.accessor_id,
                params.resource_type,
                (exc.details or {}).get("field"),
            )
            return Err(exc)
        risk = compute_risk_level(
            data_category=data_category,
            access_type=access_type,
            accessor_type=accessor_type,
        )
        entry = SensitiveDataAccessLog(
            tenant_id=params.tenant_id,
            accessor_type=accessor_type.value,
            accessor_id=params.accessor_id,
            accessor_email=params.accessor_email,
            accessor_role=params.accessor_role,
            data_category=data_category.value,
            resource_type=params.resource_type,
            resource_id=params.resource_id,
            fields_accessed=list(params.fields_accessed),
            access_type=access_type.value,
            access_reason=access_reason.value,
            reason_details=params.reason_details,
            ticket_id=params.ticket_id,
            ip_address=params.ip_address,
            user_agent=params.user_agent,
            session_id=params.session_id,
            risk_level=risk.value,
            was_data_masked=params.was_data_masked,
            flagged=False,
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except STORE_ERRORS as exc:
            logger.warning(
                "sensitive_access_write_failed accessor_id=%s resource_type=%s resource_id=%s",
                params.accessor_id,
                params.resource_type,
                params.resource_id,
                exc_info=exc,
            )
            return Err(StoreUnavailableError("Failed to persist sensitive access log"))
        return Ok(entry.id)

    @store_operation("access_logs_query")
    async def get_access_logs(
        self,
        *,
        tenant_id: str | None = None,
        accessor_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        data_category: DataCategory | str | None = None,
        risk_level: RiskLevel | str | None = None,
        flagged: bool | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Result[AccessLogPage]:
        page_size = self._page_size(limit)
        async with self._session_factory() as session:
            logs, total = await access_logs_repo.list_access_logs(
                session,
                tenant_id=tenant_id,
                accessor_id=accessor_id,
                resource_type=resource_type,
                resource_id=resource_id,
                data_category=parse_enum(DataCategory, data_category).value if data_category else None,
                risk_level=parse_enum(RiskLevel, risk_level).value if risk_level else None,
                flagged=flagged,
                created_from=start_date,
                created_to=end_date,
                offset=max(0, offset),
                limit=page_size,
            )
        return Ok(AccessLogPage(logs=logs, total=total))

    @store_operation("access_log_get")
    async def get_access_log(self, log_id: str) -> Result[SensitiveDataAccessLog | None]:
        async with self._session_factory() as session:
            return Ok(await session.get(SensitiveDataAccessLog, log_id))

    @store_operation("access_log_flag")
    async def flag_access_log(self, log_id: str, reason: str, reviewer_id: str) -> Result[SensitiveDataAccessLog]:
        # The review columns are the only mutable part of an access row.
        async with self._session_factory() as session:
            entry = await session.get(SensitiveDataAccessLog, log_id)
            if entry is None:
                return Err(NotFoundError("Access log not found", details={"log_id": log_id}))
            entry.flagged = True
            entry.flag_reason = reason
            entry.reviewed_by = reviewer_id
            entry.reviewed_at = _utc_now()
            await session.commit()
        logger.info("sensitive_access_flagged log_id=%s reviewer_id=%s", log_id, reviewer_id)
        return Ok(entry)

    @store_operation("unusual_access_check", log_level=logging.WARNING)
    async def detect_unusual_access(
        self,
        accessor_id: str,
        tenant_id: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Result[UnusualAccessReport]:
        current = now or _utc_now()
        hour_ago = current - HOUR_WINDOW
        day_ago = current - DAY_WINDOW
        async with self._session_factory() as session:
            hour_count = await access_logs_repo.count_accesses_since(
                session, accessor_id=accessor_id, tenant_id=tenant_id, since=hour_ago
            )
            day_count = await access_logs_repo.count_accesses_since(
                session, accessor_id=accessor_id, tenant_id=tenant_id, since=day_ago
            )
            phi_count = await access_logs_repo.count_accesses_since(
                session,
                accessor_id=accessor_id,
                tenant_id=tenant_id,
                since=hour_ago,
                data_category=DataCategory.PHI.value,
            )
        return Ok(
            score_unusual_access(
                hour_count=hour_count,
                day_count=day_count,
                phi_hour_count=phi_count,
                hour_threshold=self._settings.anomaly_hour_threshold,
                day_threshold=self._settings.anomaly_day_threshold,
                phi_hour_threshold=self._settings.anomaly_phi_hour_threshold,
            )
        )

    def _page_size(self, limit: int | None) -> int:
        if limit is None or limit <= 0:
            return self._settings.audit_default_page_size
        return min(limit, self._settings.audit_max_page_size)

