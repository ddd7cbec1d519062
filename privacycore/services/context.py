from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from privacycore.core.config import Settings, get_settings, reload_settings
from privacycore.services.access_audit import AccessAuditLogger
from privacycore.services.breach import BreachRegister
from privacycore.services.compliance_programs import ComplianceProgramTracker
from privacycore.services.consent import ConsentLedger
from privacycore.services.dsar import DsarWorkflow
from privacycore.services.masking import MaskingEngine
from privacycore.services.tenant_settings import TenantComplianceSettingsService


logger = logging.getLogger(__name__)


@dataclass
class PrivacyCore:
    """Explicit service context built once at startup and passed to call sites.

    The masking rule cache is the only in-process mutable state; it lives on
    ``masking`` and is rebuilt by ``reload``.
    """

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    time_source: Callable[[], float] = time.monotonic
    masking: MaskingEngine = field(init=False)
    audit: AccessAuditLogger = field(init=False)
    consent: ConsentLedger = field(init=False)
    dsar: DsarWorkflow = field(init=False)
    breaches: BreachRegister = field(init=False)
    programs: ComplianceProgramTracker = field(init=False)
    tenant_settings: TenantComplianceSettingsService = field(init=False)

    def __post_init__(self) -> None:
        self._build_services()

    def _build_services(self) -> None:
        self.masking = MaskingEngine(
            self.session_factory,
            cache_ttl_s=self.settings.masking_cache_ttl_s,
            time_source=self.time_source,
        )
        self.audit = AccessAuditLogger(self.session_factory, self.settings)
        self.consent = ConsentLedger(self.session_factory, self.settings)
        self.dsar = DsarWorkflow(self.session_factory, self.settings)
        self.breaches = BreachRegister(self.session_factory, self.settings)
        self.programs = ComplianceProgramTracker(self.session_factory)
        self.tenant_settings = TenantComplianceSettingsService(self.session_factory)

    def reload(self, settings: Settings | None = None) -> None:
        # Re-read configuration and start every service, including the masking cache, fresh.
        self.settings = settings or reload_settings()
        self._build_services()
        logger.info("privacy_core_reloaded masking_cache_ttl_s=%s", self.settings.masking_cache_ttl_s)


def build_privacy_core(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> PrivacyCore:
    if session_factory is None:
        from privacycore.persistence.db import SessionLocal

        session_factory = SessionLocal
    return PrivacyCore(settings=settings or get_settings(), session_factory=session_factory)
