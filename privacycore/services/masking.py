from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re
import secrets
import string
import time
from typing import Any, Callable, Mapping, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.errors import InvalidEnumValueError, NotFoundError
from privacycore.core.result import Err, Ok, Result, store_operation
from privacycore.domain.enums import MaskingType, parse_enum
from privacycore.domain.models import MaskingRule


logger = logging.getLogger(__name__)

_FULL_MASK = "********"
_REDACTED = "[REDACTED]"
_NON_DIGITS = re.compile(r"\D")
_TOKEN_ALPHABET = string.ascii_lowercase + string.digits

GLOBAL_SCOPE = "global"

R = TypeVar("R", bound=Mapping[str, Any])


@dataclass(frozen=True)
class MaskingConfig:
    type: MaskingType
    pattern: str | None = None
    preserve_length: bool = True


@dataclass(frozen=True)
class ResolvedRule:
    # Immutable snapshot of a rule row so cached values cannot be mutated by callers.
    id: str
    tenant_id: str | None
    role_name: str | None
    resource_type: str
    field_name: str
    masking_type: MaskingType
    masking_pattern: str | None
    preserve_length: bool
    priority: int

    @classmethod
    def from_row(cls, row: MaskingRule) -> "ResolvedRule":
        try:
            masking_type = parse_enum(MaskingType, row.masking_type)
        except InvalidEnumValueError:
            masking_type = MaskingType.PARTIAL
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            role_name=row.role_name,
            resource_type=row.resource_type,
            field_name=row.field_name,
            masking_type=masking_type,
            masking_pattern=row.masking_pattern,
            preserve_length=bool(row.preserve_length),
            priority=int(row.priority or 0),
        )


def mask_value(value: Any, config: MaskingConfig) -> str:
    """Mask a single value for display.

    ``hash`` and ``tokenize`` are display placeholders, not digests: the hash tag
    embeds the first four characters and the token suffix is random per call.
    """
    if value is None:
        return ""
    text = str(value)
    if config.type == MaskingType.FULL:
        return "*" * len(text) if config.preserve_length else _FULL_MASK
    if config.type == MaskingType.PARTIAL:
        if config.pattern:
            return config.pattern
        if len(text) <= 4:
            return "*" * len(text)
        return text[:2] + "*" * (len(text) - 4) + text[-2:]
    if config.type == MaskingType.HASH:
        return f"[HASH:{text[:4]}...]"
    if config.type == MaskingType.REDACT:
        return _REDACTED
    if config.type == MaskingType.TOKENIZE:
        suffix = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(8))
        return f"[TOKEN:{suffix}]"
    return "[MASKED]"


def mask_email(email: str | None) -> str:
    # Keep the domain and the first/last local-part characters.
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    if not sep or not domain:
        return mask_value(email, MaskingConfig(type=MaskingType.PARTIAL))
    if len(local) <= 2:
        masked_local = "*" * len(local)
    else:
        masked_local = local[0] + "*" * (len(local) - 2) + local[-1]
    return f"{masked_local}@{domain}"


def mask_phone(phone: str | None) -> str:
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) < 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def mask_pan(pan: str | None) -> str:
    # 10-character alphanumeric tax id: keep first two and last two.
    if not pan:
        return ""
    if len(pan) != 10:
        return mask_value(pan, MaskingConfig(type=MaskingType.PARTIAL))
    return pan[:2] + "****" + pan[-2:]


def mask_aadhaar(aadhaar: str | None) -> str:
    # 12-digit national id: only the last group of four survives.
    if not aadhaar:
        return ""
    digits = _NON_DIGITS.sub("", aadhaar)
    if len(digits) != 12:
        return mask_value(aadhaar, MaskingConfig(type=MaskingType.FULL, preserve_length=False))
    return "XXXX-XXXX-" + digits[-4:]


def mask_credit_card(card: str | None) -> str:
    if not card:
        return ""
    digits = _NON_DIGITS.sub("", card)
    if len(digits) < 4:
        return "*" * len(digits)
    return "**** **** **** " + digits[-4:]


# Field-name fragments that select a specialized masker, checked in order.
_FIELD_MASKERS: tuple[tuple[str, Callable[[str | None], str]], ...] = (
    ("email", mask_email),
    ("phone", mask_phone),
    ("pan", mask_pan),
    ("aadhaar", mask_aadhaar),
    ("card", mask_credit_card),
)


def mask_field(field_name: str, value: Any, rule: ResolvedRule) -> str:
    lowered = field_name.lower()
    for fragment, masker in _FIELD_MASKERS:
        if fragment in lowered:
            return masker(str(value))
    return mask_value(
        value,
        MaskingConfig(
            type=rule.masking_type,
            pattern=rule.masking_pattern,
            preserve_length=rule.preserve_length,
        ),
    )


class MaskingRuleCache:
    """Per-key TTL cache of resolved rules keyed by (tenant scope, role)."""

    def __init__(self, ttl_s: float, *, time_source: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._time_source = time_source
        self._entries: dict[tuple[str, str], tuple[float, tuple[ResolvedRule, ...]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: tuple[str, str]) -> tuple[ResolvedRule, ...] | None:
        if self.ttl_s <= 0:
            return None
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, rules = entry
            if expires_at <= self._time_source():
                self._entries.pop(key, None)
                return None
            return rules

    async def set(self, key: tuple[str, str], rules: tuple[ResolvedRule, ...]) -> None:
        if self.ttl_s <= 0:
            return
        async with self._lock:
            self._entries[key] = (self._time_source() + self.ttl_s, rules)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class MaskingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache_ttl_s: float,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self.cache = MaskingRuleCache(cache_ttl_s, time_source=time_source)

    async def resolve_rules(self, tenant_id: str | None, role_name: str) -> Result[tuple[ResolvedRule, ...]]:
        # Rule edits are not pushed to the cache; they surface once the key expires.
        key = (tenant_id or GLOBAL_SCOPE, role_name)
        cached = await self.cache.get(key)
        if cached is not None:
            return Ok(cached)
        result = await self._load_rules(tenant_id, role_name)
        if result.ok:
            await self.cache.set(key, result.value)
        return result

    @store_operation("masking_rules_load", log_level=logging.WARNING)
    async def _load_rules(self, tenant_id: str | None, role_name: str) -> Result[tuple[ResolvedRule, ...]]:
        tenant_clause = (
            or_(MaskingRule.tenant_id == tenant_id, MaskingRule.tenant_id.is_(None))
            if tenant_id
            else MaskingRule.tenant_id.is_(None)
        )
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(MaskingRule)
                    .where(
                        tenant_clause,
                        or_(MaskingRule.role_name == role_name, MaskingRule.role_name.is_(None)),
                        MaskingRule.is_enabled.is_(True),
                    )
                    .order_by(MaskingRule.priority.desc(), MaskingRule.id)
                )
            ).scalars().all()
        return Ok(tuple(ResolvedRule.from_row(row) for row in rows))

    async def apply_masking(
        self,
        record: R,
        resource_type: str,
        role_name: str,
        tenant_id: str | None = None,
    ) -> Result[R]:
        resolved = await self.resolve_rules(tenant_id, role_name)
        if not resolved.ok:
            return resolved
        applicable = [rule for rule in resolved.value if rule.resource_type == resource_type]
        if not applicable:
            return Ok(record)

        masked: dict[str, Any] | None = None
        seen_fields: set[str] = set()
        # Rules arrive priority-descending; the first rule per field wins.
        for rule in applicable:
            field_name = rule.field_name
            if field_name in seen_fields:
                continue
            seen_fields.add(field_name)
            if field_name not in record or record[field_name] is None:
                continue
            if masked is None:
                masked = dict(record)
            masked[field_name] = mask_field(field_name, record[field_name], rule)
        if masked is None:
            return Ok(record)
        return Ok(masked)  # type: ignore[arg-type]

    async def apply_masking_many(
        self,
        records: list[Any],
        resource_type: str,
        role_name: str,
        tenant_id: str | None = None,
    ) -> Result[list[Any]]:
        # Non-object items pass through untouched.
        output: list[Any] = []
        for item in records:
            if isinstance(item, dict):
                result = await self.apply_masking(item, resource_type, role_name, tenant_id)
                if not result.ok:
                    return result
                output.append(result.value)
            else:
                output.append(item)
        return Ok(output)

    @store_operation("masking_rule_create")
    async def create_rule(
        self,
        *,
        resource_type: str,
        field_name: str,
        masking_type: MaskingType | str = MaskingType.PARTIAL,
        tenant_id: str | None = None,
        role_name: str | None = None,
        masking_pattern: str | None = None,
        preserve_length: bool = True,
        priority: int = 0,
        is_enabled: bool = True,
        description: str | None = None,
    ) -> Result[MaskingRule]:
        rule = MaskingRule(
            tenant_id=tenant_id,
            role_name=role_name,
            resource_type=resource_type,
            field_name=field_name,
            masking_type=parse_enum(MaskingType, masking_type).value,
            masking_pattern=masking_pattern,
            preserve_length=preserve_length,
            priority=priority,
            is_enabled=is_enabled,
            description=description,
        )
        async with self._session_factory() as session:
            session.add(rule)
            await session.commit()
        logger.info(
            "masking_rule_created rule_id=%s tenant_id=%s resource_type=%s field=%s",
            rule.id,
            tenant_id,
            resource_type,
            field_name,
        )
        return Ok(rule)

    @store_operation("masking_rule_list")
    async def list_rules(self, tenant_id: str | None) -> Result[list[MaskingRule]]:
        # Tenant admins see their own rules plus the shared global templates.
        async with self._session_factory() as session:
            stmt = select(MaskingRule)
            if tenant_id:
                stmt = stmt.where(or_(MaskingRule.tenant_id == tenant_id, MaskingRule.tenant_id.is_(None)))
            else:
                stmt = stmt.where(MaskingRule.tenant_id.is_(None))
            rows = (
                await session.execute(stmt.order_by(MaskingRule.resource_type, MaskingRule.priority.desc()))
            ).scalars().all()
        return Ok(list(rows))

    @store_operation("masking_rule_toggle")
    async def set_rule_enabled(self, rule_id: str, enabled: bool) -> Result[MaskingRule]:
        async with self._session_factory() as session:
            rule = await session.get(MaskingRule, rule_id)
            if rule is None:
                return Err(NotFoundError("Masking rule not found", details={"rule_id": rule_id}))
            rule.is_enabled = enabled
            await session.commit()
        return Ok(rule)
