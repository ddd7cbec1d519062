from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from privacycore.core.errors import ConflictError
from privacycore.domain.enums import ConsentType
from privacycore.domain.models import ConsentRecord
from privacycore.services.consent import SUPERSEDED_REASON, ConsentParams


def _granted_row(version: str) -> ConsentRecord:
    return ConsentRecord(
        tenant_id="t1",
        subject_type="customer",
        subject_id="c-1",
        consent_type=ConsentType.MARKETING.value,
        status="granted",
        purpose="Product newsletters",
        version=version,
    )


async def _insert_granted(session_factory, version: str) -> None:
    # Plain insert with no supersede step, as a competing writer would commit it.
    async with session_factory() as session:
        async with session.begin():
            session.add(_granted_row(version))


def _params(**overrides) -> ConsentParams:
    values = {
        "tenant_id": "t1",
        "subject_type": "customer",
        "subject_id": "c-1",
        "consent_type": ConsentType.MARKETING,
        "purpose": "Product newsletters",
        "subject_email": "ada@example.com",
    }
    values.update(overrides)
    return ConsentParams(**values)


@pytest.mark.asyncio
async def test_recording_supersedes_previous_grant(core) -> None:
    for version in ("1", "2", "3"):
        recorded = await core.consent.record_consent(_params(version=version))
        assert recorded.ok

    history = (await core.consent.get_subject_consents("t1", "customer", "c-1")).unwrap()
    assert len(history) == 3
    granted = [record for record in history if record.status == "granted"]
    assert len(granted) == 1
    assert granted[0].version == "3"
    superseded = [record for record in history if record.status == "withdrawn"]
    assert {record.withdrawal_reason for record in superseded} == {SUPERSEDED_REASON}
    assert all(record.withdrawn_at is not None for record in superseded)


@pytest.mark.asyncio
async def test_consent_keys_are_independent(core) -> None:
    await core.consent.record_consent(_params())
    await core.consent.record_consent(_params(consent_type=ConsentType.PROFILING))
    await core.consent.record_consent(_params(tenant_id="t2"))

    marketing = (await core.consent.check_consent("t1", "customer", "c-1", "marketing")).unwrap()
    profiling = (await core.consent.check_consent("t1", "customer", "c-1", "profiling")).unwrap()
    assert marketing.has_consent
    assert profiling.has_consent
    assert marketing.record.id != profiling.record.id


@pytest.mark.asyncio
async def test_withdraw_consent(core) -> None:
    await core.consent.record_consent(_params())
    withdrawn = (await core.consent.withdraw_consent("t1", "customer", "c-1", "marketing", "opted out")).unwrap()
    assert withdrawn == 1

    check = (await core.consent.check_consent("t1", "customer", "c-1", ConsentType.MARKETING)).unwrap()
    assert not check.has_consent
    assert check.record is None

    history = (await core.consent.get_subject_consents("t1", "customer", "c-1")).unwrap()
    assert history[0].status == "withdrawn"
    assert history[0].withdrawal_reason == "opted out"


@pytest.mark.asyncio
async def test_withdraw_without_grant_is_noop(core) -> None:
    result = await core.consent.withdraw_consent("t1", "customer", "nobody", "marketing")
    assert result.ok
    assert result.value == 0


@pytest.mark.asyncio
async def test_expired_consent_is_not_valid(core) -> None:
    expires_at = datetime.now(timezone.utc) + timedelta(days=1)
    await core.consent.record_consent(_params(expires_at=expires_at))

    active = (await core.consent.check_consent("t1", "customer", "c-1", "marketing")).unwrap()
    assert active.has_consent

    later = expires_at + timedelta(seconds=1)
    expired = (await core.consent.check_consent("t1", "customer", "c-1", "marketing", now=later)).unwrap()
    assert not expired.has_consent


@pytest.mark.asyncio
async def test_unknown_consent_type_is_rejected(core) -> None:
    result = await core.consent.record_consent(_params(consent_type="newsletter"))
    assert not result.ok
    assert result.error.code == "INVALID_ENUM_VALUE"

    check = await core.consent.check_consent("t1", "customer", "c-1", "newsletter")
    assert not check.ok
    assert check.error.code == "INVALID_ENUM_VALUE"


@pytest.mark.asyncio
async def test_store_rejects_second_granted_row_for_key(session_factory) -> None:
    await _insert_granted(session_factory, "1")
    with pytest.raises(IntegrityError):
        await _insert_granted(session_factory, "2")


@pytest.mark.asyncio
async def test_grant_losing_a_race_is_retried(core, session_factory, monkeypatch) -> None:
    original = core.consent._supersede_and_insert
    calls: list[str | None] = []

    async def racing_write(params, consent_type):
        calls.append(params.version)
        if len(calls) == 1:
            # Another writer commits a grant after our supersede step, so our insert collides.
            await _insert_granted(session_factory, "racer")
            await _insert_granted(session_factory, params.version)
        return await original(params, consent_type)

    monkeypatch.setattr(core.consent, "_supersede_and_insert", racing_write)
    recorded = await core.consent.record_consent(_params(version="2"))
    assert recorded.ok
    assert calls == ["2", "2"]

    history = (await core.consent.get_subject_consents("t1", "customer", "c-1")).unwrap()
    granted = [record for record in history if record.status == "granted"]
    assert [record.version for record in granted] == ["2"]
    racer = next(record for record in history if record.version == "racer")
    assert racer.status == "withdrawn"
    assert racer.withdrawal_reason == SUPERSEDED_REASON


@pytest.mark.asyncio
async def test_grant_conflicting_on_every_attempt_returns_conflict(
    core, settings, session_factory, monkeypatch
) -> None:
    settings.consent_write_max_attempts = 2
    await _insert_granted(session_factory, "1")
    calls: list[str | None] = []

    async def always_colliding(params, consent_type):
        calls.append(params.version)
        await _insert_granted(session_factory, params.version)

    monkeypatch.setattr(core.consent, "_supersede_and_insert", always_colliding)
    recorded = await core.consent.record_consent(_params(version="2"))
    assert not recorded.ok
    assert isinstance(recorded.error, ConflictError)
    assert recorded.error.status_code == 409
    assert len(calls) == 2

    history = (await core.consent.get_subject_consents("t1", "customer", "c-1")).unwrap()
    assert [(record.version, record.status) for record in history] == [("1", "granted")]
