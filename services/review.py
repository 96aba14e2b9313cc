"""Periodic operator review composed from the probes and auditors."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any, Callable

from config.settings import AgentSettings, DriftSettings, ReviewSettings
from core.errors import WardenError
from core.logging import logger as LOGGER
from core.ops_models import HealthReport, RemoteTarget
from services.discovery import DiscoveryResult, discover_workspace
from services.drift_auditor import DriftAuditor, DriftEntry, resolve_tracked
from services.health_probes import HealthProbe
from services.log_sync import LogSync, SyncResult
from services.remote_executor import RemoteExecutor
from services.secrets.stores import SecretStore
from services.vault_audit import VaultAuditReport, audit_vault
from storage.baselines import BaselineStore


@dataclass(frozen=True)
class SectionError:
    section: str
    message: str


@dataclass
class ReviewReport:
    timestamp: float
    target: RemoteTarget
    sync: SyncResult | None = None
    discovery: DiscoveryResult | None = None
    drift: list[DriftEntry] = field(default_factory=list)
    vault: VaultAuditReport | None = None
    health: HealthReport | None = None
    manual_checks: tuple[str, ...] = ()
    errors: list[SectionError] = field(default_factory=list)

    @property
    def needs_attention(self) -> bool:
        if self.errors or any(entry.drifted for entry in self.drift):
            return True
        if self.health is not None and self.health.partial:
            return True
        return bool(self.vault and self.vault.items)

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": "review",
            "timestamp": self.timestamp,
            "target": self.target.to_payload(),
            "sync": None if self.sync is None else self.sync.to_payload(),
            "discovery": None if self.discovery is None else self.discovery.to_payload(),
            "drift": [entry.to_payload() for entry in self.drift],
            "vault": None if self.vault is None else self.vault.to_payload(),
            "health": None if self.health is None else self.health.to_payload(),
            "manual_checks": list(self.manual_checks),
            "errors": [{"section": e.section, "message": e.message} for e in self.errors],
            "needs_attention": self.needs_attention,
        }


class ReviewOrchestrator:
    """Run every review section in turn; a failing section is recorded and skipped."""

    def __init__(
        self,
        executor: RemoteExecutor,
        probe: HealthProbe,
        auditor: DriftAuditor,
        baseline_store: BaselineStore,
        *,
        secret_store: SecretStore | None = None,
        log_sync: LogSync | None = None,
        agent: AgentSettings | None = None,
        drift: DriftSettings | None = None,
        settings: ReviewSettings | None = None,
        rw_vault: str = "openclaw_write",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._executor = executor
        self._probe = probe
        self._auditor = auditor
        self._baseline_store = baseline_store
        self._secret_store = secret_store
        self._log_sync = log_sync
        self._agent = agent or AgentSettings()
        self._drift = drift or DriftSettings()
        self._settings = settings or ReviewSettings()
        self._rw_vault = rw_vault
        self._clock = clock

    def review(self, target: RemoteTarget, *, credential: str = "", skip_sync: bool = False) -> ReviewReport:
        report = ReviewReport(
            timestamp=self._clock(),
            target=target,
            manual_checks=self._settings.manual_checks,
        )

        if skip_sync or not self._settings.sync_logs or self._log_sync is None:
            LOGGER.info("[Review] Skipping log sync.")
        else:
            report.sync = self._log_sync.sync(target, self._agent.home_dir)
            if not report.sync.ok:
                report.errors.append(SectionError("sync", report.sync.message))

        try:
            report.discovery = discover_workspace(self._executor, target, self._agent)
            tracked = resolve_tracked(self._drift.tracked_files, report.discovery.workspace_dir)
            if report.discovery.workspace_dir is None:
                report.errors.append(SectionError("drift", report.discovery.reason))
            else:
                report.drift = self._auditor.audit(target, tracked, self._baseline_store)
        except WardenError as exc:
            self._record(report, "drift", exc)

        if self._secret_store is None:
            report.errors.append(SectionError("vault", "no secret store configured"))
        else:
            try:
                report.vault = audit_vault(self._secret_store, credential, self._rw_vault)
                if not report.vault.accessible:
                    report.errors.append(SectionError("vault", report.vault.message))
            except WardenError as exc:
                self._record(report, "vault", exc)

        try:
            report.health = self._probe.probe(target)
        except WardenError as exc:
            self._record(report, "health", exc)

        return report

    def _record(self, report: ReviewReport, section: str, exc: WardenError) -> None:
        LOGGER.warning("[Review] %s section failed: %s", section, exc)
        report.errors.append(SectionError(section, str(exc)))
