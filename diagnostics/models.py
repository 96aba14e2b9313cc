"""Models for diagnostics results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class DiagnosticStatus(str, Enum):
    """Status for diagnostics checks."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class DiagnosticResult:
    """Result for a single local check."""

    name: str
    status: DiagnosticStatus
    details: str

    def to_payload(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "details": self.details}
