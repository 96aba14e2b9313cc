"""Tests for core diagnostics."""

from __future__ import annotations

import logging

from diagnostics.models import DiagnosticStatus
from core import logging as core_logging
from core.diagnostics import probe


def test_core_probe() -> None:
    """Core diagnostics should pass when every installed handler redacts secrets."""

    result = probe()
    assert result.status is DiagnosticStatus.PASS


def test_core_check_ignores_handlers_attached_by_others() -> None:
    foreign = logging.NullHandler()
    core_logging.logger.addHandler(foreign)
    try:
        result = probe()
    finally:
        core_logging.logger.removeHandler(foreign)

    assert result.status is DiagnosticStatus.PASS
    assert foreign not in core_logging.installed_handlers()


def test_core_check_fails_when_redaction_is_removed() -> None:
    [handler, *_] = core_logging.installed_handlers()
    handler.removeFilter(core_logging.redaction_filter)
    try:
        result = probe()
    finally:
        handler.addFilter(core_logging.redaction_filter)

    assert result.status is DiagnosticStatus.FAIL
    assert "without secret redaction" in result.details
