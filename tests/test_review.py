"""Tests for the composed operator review."""

from __future__ import annotations

import hashlib
import subprocess

from config.settings import ReviewSettings
from services.drift_auditor import DriftAuditor, DriftClassification
from services.health_probes import HealthProbe
from services.log_sync import LogSync
from services.review import ReviewOrchestrator
from services.secrets.models import VaultItem
from storage.baselines import BaselineStore

WORKSPACE = "/home/openclaw/.openclaw/workspaces/main"


class _VaultStore:
    def __init__(self, items: list[VaultItem]) -> None:
        self._items = items

    def accessible_vaults(self, credential):
        return {"openclaw_write"}

    def read(self, credential, reference):
        raise AssertionError("review must not read secret values")

    def list_items(self, credential, vault):
        return list(self._items)


def _orchestrator(fake_host, tmp_path, *, store=None, log_sync=None) -> ReviewOrchestrator:
    return ReviewOrchestrator(
        fake_host,
        HealthProbe(fake_host),
        DriftAuditor(fake_host),
        BaselineStore(tmp_path / "baselines.json"),
        secret_store=store,
        log_sync=log_sync,
        settings=ReviewSettings(manual_checks=("Review card transactions",), sync_dir=str(tmp_path / "logs")),
        clock=lambda: 5.0,
    )


def test_review_composes_all_sections(fake_host, target, tmp_path) -> None:
    soul = f"{WORKSPACE}/SOUL.md"
    fake_host.files[soul] = b"soul"
    BaselineStore(tmp_path / "baselines.json").accept(soul, hashlib.sha256(b"soul").hexdigest(), 1.0)
    items = [VaultItem(item_id="i1", title="cached login")]

    report = _orchestrator(fake_host, tmp_path, store=_VaultStore(items)).review(
        target, credential="token", skip_sync=True
    )
    payload = report.to_payload()

    assert payload["sync"] is None
    assert payload["discovery"]["workspace_dir"] == WORKSPACE
    classes = {entry.path.rsplit("/", 1)[-1]: entry.classification for entry in report.drift}
    assert classes["SOUL.md"] is DriftClassification.UNCHANGED
    assert classes["MEMORY.md"] is DriftClassification.NEW
    assert payload["vault"]["item_count"] == 1
    assert payload["health"]["service_state"] == "running"
    assert payload["manual_checks"] == ["Review card transactions"]
    assert report.needs_attention


def test_unreachable_host_is_recorded_per_section(fake_host, target, tmp_path) -> None:
    fake_host.reachable = False

    report = _orchestrator(fake_host, tmp_path).review(target, skip_sync=True)

    sections = [error.section for error in report.errors]
    assert sections == ["drift", "vault", "health"]
    assert report.health is None


def test_log_sync_runs_rsync_with_excludes(fake_host, target, tmp_path) -> None:
    calls = []

    def runner(argv, **kwargs):
        calls.append(argv)
        return subprocess.CompletedProcess(argv, 0, "", "")

    sync = LogSync(ReviewSettings(sync_dir=str(tmp_path / "logs")), runner=runner)
    report = _orchestrator(fake_host, tmp_path, log_sync=sync).review(target)

    assert report.sync is not None and report.sync.ok
    argv = calls[0]
    assert argv[0] == "rsync"
    assert "--exclude=node_modules/" in argv
    assert argv[-2] == "openclaw@clawpi.test:~/.openclaw/"
    assert (tmp_path / "logs").is_dir()


def test_failed_sync_is_reported_not_raised(target, tmp_path) -> None:
    def runner(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 23, "", "rsync error: some files could not be transferred")

    result = LogSync(ReviewSettings(sync_dir=str(tmp_path)), runner=runner).sync(target, "~/.openclaw")

    assert not result.ok
    assert "23" in result.message
