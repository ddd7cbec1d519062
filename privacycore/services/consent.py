from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.config import Settings
from privacycore.core.errors import ConflictError, PrivacyCoreError, StoreUnavailableError
from privacycore.core.result import STORE_ERRORS, Err, Ok, Result, store_operation
from privacycore.domain.enums import ConsentStatus, ConsentType, parse_enum
from privacycore.domain.models import ConsentRecord


logger = logging.getLogger(__name__)

SUPERSEDED_REASON = "Superseded by new consent"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConsentParams:
    tenant_id: str
    subject_type: str
    subject_id: str
    consent_type: ConsentType | str
    purpose: str
    subject_email: str | None = None
    legal_basis: str | None = None
    consent_text: str | None = None
    version: str | None = None
    expires_at: datetime | None = None
    collection_method: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class ConsentCheck:
    has_consent: bool
    record: ConsentRecord | None


def _key_clause(tenant_id: str, subject_type: str, subject_id: str, consent_type: ConsentType) -> list[Any]:
    return [
        ConsentRecord.tenant_id == tenant_id,
        ConsentRecord.subject_type == subject_type,
        ConsentRecord.subject_id == subject_id,
        ConsentRecord.consent_type == consent_type.value,
    ]


class ConsentLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> None:
        self._session_factory = session_factory
        self._settings = settings

    async def record_consent(self, params: ConsentParams) -> Result[ConsentRecord]:
        """Grant consent for a key, superseding any currently granted row.

        Withdraw and insert share one transaction, and the partial unique index on
        granted rows rejects a concurrent second grant; that loser is retried so
        a subsequent read never sees two granted rows for the same key.
        """
        try:
            consent_type = parse_enum(ConsentType, params.consent_type)
        except PrivacyCoreError as exc:
            return Err(exc)
        attempts = max(1, int(self._settings.consent_write_max_attempts))
        for attempt in range(1, attempts + 1):
            try:
                record = await self._supersede_and_insert(params, consent_type)
            except IntegrityError as exc:
                logger.warning(
                    "consent_record_conflict tenant_id=%s subject_id=%s consent_type=%s attempt=%s",
                    params.tenant_id,
                    params.subject_id,
                    consent_type.value,
                    attempt,
                    exc_info=exc,
                )
                continue
            except STORE_ERRORS as exc:
                logger.error(
                    "consent_record_failed tenant_id=%s subject_id=%s consent_type=%s",
                    params.tenant_id,
                    params.subject_id,
                    consent_type.value,
                    exc_info=exc,
                )
                return Err(StoreUnavailableError("Failed to record consent"))
            logger.info(
                "consent_recorded tenant_id=%s subject_id=%s consent_type=%s record_id=%s",
                params.tenant_id,
                params.subject_id,
                consent_type.value,
                record.id,
            )
            return Ok(record)
        return Err(
            ConflictError(
                "Concurrent consent writes exhausted retries",
                details={"subject_id": params.subject_id, "consent_type": consent_type.value},
            )
        )

    async def _supersede_and_insert(self, params: ConsentParams, consent_type: ConsentType) -> ConsentRecord:
        now = _utc_now()
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(ConsentRecord)
                    .where(
                        *_key_clause(params.tenant_id, params.subject_type, params.subject_id, consent_type),
                        ConsentRecord.status == ConsentStatus.GRANTED.value,
                    )
                    .values(
                        status=ConsentStatus.WITHDRAWN.value,
                        withdrawn_at=now,
                        withdrawal_reason=SUPERSEDED_REASON,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                record = ConsentRecord(
                    tenant_id=params.tenant_id,
                    subject_type=params.subject_type,
                    subject_id=params.subject_id,
                    subject_email=params.subject_email,
                    consent_type=consent_type.value,
                    status=ConsentStatus.GRANTED.value,
                    purpose=params.purpose,
                    legal_basis=params.legal_basis,
                    consent_text=params.consent_text,
                    version=params.version,
                    granted_at=now,
                    expires_at=params.expires_at,
                    collection_method=params.collection_method,
                    ip_address=params.ip_address,
                    user_agent=params.user_agent,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
        return record

    @store_operation("consent_withdraw")
    async def withdraw_consent(
        self,
        tenant_id: str,
        subject_type: str,
        subject_id: str,
        consent_type: ConsentType | str,
        reason: str | None = None,
    ) -> Result[int]:
        # Returns the number of rows withdrawn; 0 means nothing was granted.
        parsed = parse_enum(ConsentType, consent_type)
        now = _utc_now()
        async with self._session_factory() as session:
            result = await session.execute(
                update(ConsentRecord)
                .where(
                    *_key_clause(tenant_id, subject_type, subject_id, parsed),
                    ConsentRecord.status == ConsentStatus.GRANTED.value,
                )
                .values(
                    status=ConsentStatus.WITHDRAWN.value,
                    withdrawn_at=now,
                    withdrawal_reason=reason,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        withdrawn = int(result.rowcount or 0)
        logger.info(
            "consent_withdrawn tenant_id=%s subject_id=%s consent_type=%s withdrawn=%s",
            tenant_id,
            subject_id,
            parsed.value,
            withdrawn,
        )
        return Ok(withdrawn)

    @store_operation("consent_check")
    async def check_consent(
        self,
        tenant_id: str,
        subject_type: str,
        subject_id: str,
        consent_type: ConsentType | str,
        *,
        now: datetime | None = None,
    ) -> Result[ConsentCheck]:
        parsed = parse_enum(ConsentType, consent_type)
        current = now or _utc_now()
        async with self._session_factory() as session:
            record = (
                await session.execute(
                    select(ConsentRecord)
                    .where(
                        *_key_clause(tenant_id, subject_type, subject_id, parsed),
                        ConsentRecord.status == ConsentStatus.GRANTED.value,
                        or_(ConsentRecord.expires_at.is_(None), ConsentRecord.expires_at >= current),
                    )
                    .order_by(ConsentRecord.granted_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
        return Ok(ConsentCheck(has_consent=record is not None, record=record))

    @store_operation("consent_history")
    async def get_subject_consents(
        self,
        tenant_id: str,
        subject_type: str,
        subject_id: str,
    ) -> Result[list[ConsentRecord]]:
        # Full history regardless of status, newest grant first.
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(ConsentRecord)
                    .where(
                        ConsentRecord.tenant_id == tenant_id,
                        ConsentRecord.subject_type == subject_type,
                        ConsentRecord.subject_id == subject_id,
                    )
                    .order_by(ConsentRecord.granted_at.desc(), ConsentRecord.created_at.desc())
                )
            ).scalars().all()
        return Ok(list(rows))
