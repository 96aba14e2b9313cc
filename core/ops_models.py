"""Models for remote supervision, health tracking and escalation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Mapping

from core.errors import PartialHealthCollection


@dataclass(frozen=True)
class RemoteTarget:
    """Supervised endpoint; immutable for one invocation."""

    host: str
    principal: str
    port: int = 22
    connect_timeout_s: float = 10.0

    @property
    def destination(self) -> str:
        return f"{self.principal}@{self.host}"

    def with_principal(self, principal: str) -> "RemoteTarget":
        return RemoteTarget(
            host=self.host,
            principal=principal,
            port=self.port,
            connect_timeout_s=self.connect_timeout_s,
        )

    def to_payload(self) -> dict[str, Any]:
        return {"host": self.host, "principal": self.principal, "port": self.port}


@dataclass(frozen=True)
class CommandResult:
    """Output of a remote command that ran to completion."""

    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ServiceState(str, Enum):
    """Service-manager view of the supervised agent."""

    UNKNOWN = "unknown"
    STOPPED = "stopped"
    RUNNING = "running"
    DEGRADED = "degraded"


class EscalationLevel(IntEnum):
    """Ordered stop levels; a session only moves forward."""

    RUNNING = 0
    GRACEFUL_STOP = 1
    HARD_KILL = 2
    HOST_SHUTDOWN = 3


class ControllerState(str, Enum):
    """Kill-switch session states."""

    RUNNING = "running"
    GRACEFUL_STOP = "graceful_stop"
    HARD_KILL = "hard_kill"
    HOST_SHUTDOWN = "host_shutdown"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ControllerState.STOPPED, ControllerState.FAILED)


@dataclass(frozen=True)
class ProcessEntry:
    """One line of the remote process snapshot."""

    pid: int
    command: str


@dataclass(frozen=True)
class SubCheckFailure:
    """A health sub-check that could not be collected."""

    check: str
    message: str


HEALTH_SUB_CHECKS = (
    "service",
    "processes",
    "ports",
    "disk",
    "temperature",
    "memory",
    "uptime",
)


@dataclass(frozen=True)
class HealthReport:
    """Point-in-time health snapshot of the target.

    Fields left as ``None`` always have a matching entry in ``errors``.
    """

    timestamp: float
    target: RemoteTarget
    service_state: ServiceState = ServiceState.UNKNOWN
    processes: tuple[ProcessEntry, ...] | None = None
    listening_ports: tuple[int, ...] | None = None
    disk_used_percent: float | None = None
    cpu_temperature_c: float | None = None
    memory_free_bytes: int | None = None
    uptime_s: float | None = None
    errors: tuple[SubCheckFailure, ...] = ()
    incomplete: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    @property
    def process_count(self) -> int:
        return len(self.processes or ())

    def failed_checks(self) -> set[str]:
        return {error.check for error in self.errors}

    def raise_for_partial(self) -> None:
        if self.errors:
            raise PartialHealthCollection(self)

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": "health",
            "timestamp": self.timestamp,
            "target": self.target.to_payload(),
            "service_state": self.service_state.value,
            "processes": (
                None
                if self.processes is None
                else [{"pid": p.pid, "command": p.command} for p in self.processes]
            ),
            "listening_ports": None if self.listening_ports is None else list(self.listening_ports),
            "disk_used_percent": self.disk_used_percent,
            "cpu_temperature_c": self.cpu_temperature_c,
            "memory_free_bytes": self.memory_free_bytes,
            "uptime_s": self.uptime_s,
            "errors": [{"check": e.check, "message": e.message} for e in self.errors],
            "incomplete": self.incomplete,
        }


@dataclass(frozen=True)
class TransitionRecord:
    """Committed kill-switch transition."""

    timestamp: float
    from_state: ControllerState
    to_state: ControllerState
    level: EscalationLevel
    message: str
    metadata: Mapping[str, str | float | int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "from": self.from_state.value,
            "to": self.to_state.value,
            "level": self.level.name.lower(),
            "message": self.message,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one kill-switch operation."""

    action: str
    state: ControllerState
    level: EscalationLevel
    already_in_state: bool
    confirmed: bool
    message: str
    report: HealthReport | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is not ControllerState.FAILED

    def to_payload(self) -> dict[str, Any]:
        return {
            "kind": "transition",
            "action": self.action,
            "state": self.state.value,
            "level": self.level.name.lower(),
            "already_in_state": self.already_in_state,
            "confirmed": self.confirmed,
            "message": self.message,
            "report": None if self.report is None else self.report.to_payload(),
        }
