"""Diagnostics runner utilities."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from core.logging import logger as LOGGER
from diagnostics.models import DiagnosticResult, DiagnosticStatus

Probe = Callable[[], DiagnosticResult]


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Return a human-friendly diagnostics report."""

    lines = ["Control-point diagnostics", "-" * 60]
    lines.extend(f"[{result.status.value}] {result.name}: {result.details}" for result in results)
    lines.append("-" * 60)
    return "\n".join(lines)


def has_failures(results: Iterable[DiagnosticResult]) -> bool:
    return any(result.status is DiagnosticStatus.FAIL for result in results)


def run_diagnostics(probes: Iterable[Probe]) -> list[DiagnosticResult]:
    """Run every probe; a probe that raises is reported as FAIL."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001 - diagnostics must keep running
            LOGGER.exception("[Diagnostics] Probe failed: %s", probe)
            result = DiagnosticResult(
                name=getattr(probe, "__name__", "unknown_probe"),
                status=DiagnosticStatus.FAIL,
                details=f"Probe raised exception: {exc}",
            )
        results.append(result)
    return results
