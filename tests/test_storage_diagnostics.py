"""Tests for storage diagnostics."""

from __future__ import annotations

from diagnostics.models import DiagnosticStatus
from storage.diagnostics import probe


def test_storage_probe_offline(tmp_path) -> None:
    """Storage probe should pass when using a temp directory."""

    result = probe(base_dir=tmp_path)
    assert result.status is DiagnosticStatus.PASS
    assert (tmp_path / "var" / "baselines").is_dir()


def test_storage_probe_from_config(tmp_path) -> None:
    config = {"storage": {"var_dir": str(tmp_path / "v"), "log_dir": str(tmp_path / "l")}}
    result = probe(config=config)
    assert result.status is DiagnosticStatus.PASS
