"""Diagnostics routines for the core subsystem."""

from __future__ import annotations

import importlib.util

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe() -> DiagnosticResult:
    """Check that the control-plane logger is set up and scrubs secrets."""

    name = "logging"
    from core import logging as core_logging

    handlers = core_logging.installed_handlers()
    if not handlers:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Control-plane logger has no handlers",
        )
    unfiltered = [
        handler
        for handler in handlers
        if core_logging.redaction_filter not in handler.filters
    ]
    if unfiltered:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"{len(unfiltered)} log handler(s) without secret redaction",
        )
    rich_available = importlib.util.find_spec("rich") is not None
    details = "Rich logging to stderr" if rich_available else "Plain stderr logging (rich not installed)"
    return DiagnosticResult(name=name, status=DiagnosticStatus.PASS, details=details)
