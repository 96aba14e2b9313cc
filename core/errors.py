"""Error taxonomy and process exit codes for the control plane."""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.ops_models import HealthReport
    from services.secrets.models import SecretReference


class ExitCode(IntEnum):
    """Process exit codes returned by the command-line entry point."""

    OK = 0
    FAILURE = 1
    USAGE = 2
    CONFIRMATION_REQUIRED = 3
    UNREACHABLE = 4
    TIMEOUT = 5
    CREDENTIALS = 6
    REMOTE_FAILURE = 7
    ATTENTION = 8
    INTERRUPTED = 130


class WardenError(Exception):
    """Base class for control-plane failures."""

    exit_code = ExitCode.FAILURE


class RemoteConnectionError(WardenError, ConnectionError):
    """Target unreachable or authentication rejected."""

    exit_code = ExitCode.UNREACHABLE

    def __init__(self, host: str, message: str) -> None:
        super().__init__(f"{host}: {message}")
        self.host = host


class RemoteTimeoutError(WardenError, TimeoutError):
    """Command issued but no response within the bound.

    The remote command may have started and partially executed.
    """

    exit_code = ExitCode.TIMEOUT

    def __init__(self, host: str, command: str, timeout_s: float) -> None:
        super().__init__(f"{host}: no response within {timeout_s:.1f}s for {command!r}")
        self.host = host
        self.command = command
        self.timeout_s = timeout_s


class RemoteCommandFailed(WardenError):
    """Remote command ran and returned a failing exit code."""

    exit_code = ExitCode.REMOTE_FAILURE

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        detail = stderr.strip().splitlines()[0] if stderr.strip() else "no stderr"
        super().__init__(f"{command!r} exited with {exit_code}: {detail}")
        self.command = command
        self.returncode = exit_code
        self.stderr = stderr


class CredentialInvalid(WardenError):
    """Secret-store credential rejected before any reference lookup."""

    exit_code = ExitCode.CREDENTIALS


class SecretUnavailable(WardenError):
    """A specific secret reference could not be resolved."""

    exit_code = ExitCode.CREDENTIALS

    def __init__(self, reference: "SecretReference", reason: str = "") -> None:
        message = f"secret for {reference.env_name} unavailable ({reference.uri})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.reference = reference


class EscalationBlocked(WardenError):
    """Operator-confirmation-gated transition attempted without confirmation."""

    exit_code = ExitCode.CONFIRMATION_REQUIRED


class InvalidTransition(WardenError):
    """Transition would move the escalation session backwards or out of a terminal state."""

    exit_code = ExitCode.FAILURE


class PartialHealthCollection(WardenError):
    """One or more health sub-checks failed; the report is still available."""

    exit_code = ExitCode.ATTENTION

    def __init__(self, report: "HealthReport") -> None:
        names = ", ".join(error.check for error in report.errors)
        super().__init__(f"health collection incomplete: {names}")
        self.report = report
