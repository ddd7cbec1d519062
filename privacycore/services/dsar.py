from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.config import Settings
from privacycore.core.errors import IllegalTransitionError, NotFoundError
from privacycore.core.result import Err, Ok, Result, store_operation
from privacycore.domain.enums import DsarRequestType, DsarStatus, Regulation, parse_enum
from privacycore.domain.models import DsarActivityLog, DsarRequest
from privacycore.persistence.repos import dsar as dsar_repo


logger = logging.getLogger(__name__)

ACTION_CREATED = "DSAR_CREATED"

TERMINAL_STATUSES = frozenset({DsarStatus.COMPLETED, DsarStatus.REJECTED, DsarStatus.EXPIRED})

# Forward chain plus rejected/expired from any non-terminal state.
_FORWARD: dict[DsarStatus, DsarStatus] = {
    DsarStatus.SUBMITTED: DsarStatus.ACKNOWLEDGED,
    DsarStatus.ACKNOWLEDGED: DsarStatus.IN_PROGRESS,
    DsarStatus.IN_PROGRESS: DsarStatus.PENDING_VERIFICATION,
    DsarStatus.PENDING_VERIFICATION: DsarStatus.COMPLETED,
}
ALLOWED_TRANSITIONS: dict[DsarStatus, frozenset[DsarStatus]] = {
    status: (
        frozenset()
        if status in TERMINAL_STATUSES
        else frozenset({_FORWARD[status], DsarStatus.REJECTED, DsarStatus.EXPIRED})
    )
    for status in DsarStatus
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def status_action(status: DsarStatus) -> str:
    return f"STATUS_CHANGED_TO_{status.value.upper()}"


def is_transition_allowed(current: DsarStatus, target: DsarStatus) -> bool:
    # Re-applying the current status is accepted so repeated calls stay recordable.
    return current == target or target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class DsarParams:
    tenant_id: str
    request_type: DsarRequestType | str
    subject_email: str
    subject_name: str | None = None
    subject_phone: str | None = None
    subject_id_type: str | None = None
    subject_id_number: str | None = None
    request_details: str | None = None
    data_categories: list[str] = field(default_factory=list)
    ip_address: str | None = None
    regulation: Regulation | str | None = None
    # Explicit override of the statutory window, in days.
    response_window_days: int | None = None


@dataclass(frozen=True)
class DsarPage:
    requests: list[DsarRequest]
    total: int


class DsarWorkflow:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._session_factory = session_factory
        self._settings = settings

    def response_window(self, regulation: Regulation | None, override_days: int | None = None) -> timedelta:
        if override_days is not None:
            return timedelta(days=override_days)
        if regulation is not None:
            configured = self._settings.dsar_regulation_window_days.get(regulation.value)
            if configured is not None:
                return timedelta(days=configured)
        return timedelta(days=self._settings.dsar_response_window_days)

    @store_operation("dsar_create")
    async def create_dsar(self, params: DsarParams, *, now: datetime | None = None) -> Result[DsarRequest]:
        request_type = parse_enum(DsarRequestType, params.request_type)
        regulation = parse_enum(Regulation, params.regulation) if params.regulation else None
        created_at = now or _utc_now()
        request = DsarRequest(
            tenant_id=params.tenant_id,
            request_type=request_type.value,
            subject_email=params.subject_email,
            subject_name=params.subject_name,
            subject_phone=params.subject_phone,
            subject_id_type=params.subject_id_type,
            subject_id_number=params.subject_id_number,
            request_details=params.request_details,
            data_categories=list(params.data_categories),
            regulation=regulation.value if regulation else None,
            status=DsarStatus.SUBMITTED.value,
            response_deadline=created_at + self.response_window(regulation, params.response_window_days),
            ip_address=params.ip_address,
            created_at=created_at,
            updated_at=created_at,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(request)
                await session.flush()
                session.add(
                    DsarActivityLog(
                        dsar_id=request.id,
                        sequence=1,
                        action=ACTION_CREATED,
                        previous_status=None,
                        new_status=DsarStatus.SUBMITTED.value,
                        notes=f"{request_type.value} request submitted by {params.subject_email}",
                        created_at=created_at,
                    )
                )
        logger.info(
            "dsar_created dsar_id=%s tenant_id=%s request_type=%s deadline=%s",
            request.id,
            request.tenant_id,
            request.request_type,
            request.response_deadline.isoformat(),
        )
        return Ok(request)

    @store_operation("dsar_status_update")
    async def update_dsar_status(
        self,
        dsar_id: str,
        new_status: DsarStatus | str,
        performed_by: str,
        performed_by_email: str | None = None,
        notes: str | None = None,
        *,
        override: bool = False,
    ) -> Result[DsarRequest]:
        """Move a DSAR to ``new_status`` and append one activity row.

        With ``dsar_strict_transitions`` enabled, targets outside the transition
        table fail with ``IllegalTransitionError`` unless ``override`` is set.
        """
        target = parse_enum(DsarStatus, new_status)
        async with self._session_factory() as session:
            async with session.begin():
                request = (
                    await session.execute(
                        select(DsarRequest).where(DsarRequest.id == dsar_id).with_for_update()
                    )
                ).scalar_one_or_none()
                if request is None:
                    return Err(NotFoundError("DSAR not found", details={"dsar_id": dsar_id}))
                previous = parse_enum(DsarStatus, request.status)
                if self._settings.dsar_strict_transitions and not override:
                    if not is_transition_allowed(previous, target):
                        return Err(
                            IllegalTransitionError(
                                f"Cannot move DSAR from {previous.value} to {target.value}",
                                details={
                                    "dsar_id": dsar_id,
                                    "from": previous.value,
                                    "to": target.value,
                                    "allowed": sorted(s.value for s in ALLOWED_TRANSITIONS[previous]),
                                },
                            )
                        )
                now = _utc_now()
                entering = previous != target
                if entering and target == DsarStatus.ACKNOWLEDGED:
                    request.acknowledged_at = now
                elif entering and target == DsarStatus.COMPLETED:
                    request.completed_at = now
                request.status = target.value
                request.updated_at = now
                sequence = await dsar_repo.next_activity_sequence(session, dsar_id)
                session.add(
                    DsarActivityLog(
                        dsar_id=dsar_id,
                        sequence=sequence,
                        action=status_action(target),
                        previous_status=previous.value,
                        new_status=target.value,
                        performed_by=performed_by,
                        performed_by_email=performed_by_email,
                        notes=notes,
                        created_at=now,
                    )
                )
        logger.info(
            "dsar_status_changed dsar_id=%s from=%s to=%s performed_by=%s override=%s",
            dsar_id,
            previous.value,
            target.value,
            performed_by,
            override,
        )
        return Ok(request)

    @store_operation("dsar_query")
    async def get_dsars(
        self,
        *,
        tenant_id: str | None = None,
        status: DsarStatus | str | None = None,
        subject_email: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> Result[DsarPage]:
        page_size = limit if limit and limit > 0 else self._settings.audit_default_page_size
        page_size = min(page_size, self._settings.audit_max_page_size)
        async with self._session_factory() as session:
            requests, total = await dsar_repo.list_dsars(
                session,
                tenant_id=tenant_id,
                status=parse_enum(DsarStatus, status).value if status else None,
                subject_email=subject_email,
                created_from=start_date,
                created_to=end_date,
                offset=max(0, offset),
                limit=page_size,
            )
        return Ok(DsarPage(requests=requests, total=total))

    @store_operation("dsar_get")
    async def get_dsar(self, dsar_id: str) -> Result[DsarRequest | None]:
        async with self._session_factory() as session:
            return Ok(await session.get(DsarRequest, dsar_id))

    @store_operation("dsar_activity")
    async def get_dsar_activity_log(self, dsar_id: str) -> Result[list[DsarActivityLog]]:
        async with self._session_factory() as session:
            if await session.get(DsarRequest, dsar_id) is None:
                return Err(NotFoundError("DSAR not found", details={"dsar_id": dsar_id}))
            return Ok(await dsar_repo.list_activity(session, dsar_id))
