"""Diagnostics routines for the external tools the services drive."""

from __future__ import annotations

import shutil
from typing import Callable

from config.settings import ExecutorSettings, ReviewSettings, SecretSettings
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(
    executor: ExecutorSettings | None = None,
    secrets: SecretSettings | None = None,
    review: ReviewSettings | None = None,
    *,
    which: Callable[[str], str | None] = shutil.which,
) -> DiagnosticResult:
    """Check that ssh is installed, and op and rsync where their features need them.

    A missing ssh client fails the probe; the other tools only limit start,
    vault audit and log sync.
    """

    name = "binaries"
    executor = executor or ExecutorSettings()
    secrets = secrets or SecretSettings()
    review = review or ReviewSettings()

    if which(executor.ssh_binary) is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"ssh client not found ({executor.ssh_binary})",
        )
    missing = [
        f"{binary} ({feature})"
        for binary, feature in (
            (secrets.op_binary, "start, vault audit"),
            (review.rsync_binary, "log sync"),
        )
        if which(binary) is None
    ]
    if missing:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Missing: {', '.join(missing)}",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Found {executor.ssh_binary}, {secrets.op_binary}, {review.rsync_binary}",
    )
