"""Read-only health probes for the supervised host."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
import time
from typing import Any, Callable

from config.settings import AgentSettings, HealthSettings
from core.errors import RemoteCommandFailed
from core.logging import logger as LOGGER
from core.ops_models import (
    HEALTH_SUB_CHECKS,
    HealthReport,
    ProcessEntry,
    RemoteTarget,
    ServiceState,
    SubCheckFailure,
)
from services import remote_commands
from services.remote_executor import RemoteExecutor

_SERVICE_STATES = {
    "active": ServiceState.RUNNING,
    "inactive": ServiceState.STOPPED,
    "failed": ServiceState.STOPPED,
    "activating": ServiceState.DEGRADED,
    "deactivating": ServiceState.DEGRADED,
    "reloading": ServiceState.DEGRADED,
}

# Helper processes that match the agent patterns only because the patterns
# appear on their own command line.
_SELF_MATCH_MARKERS = ("pgrep ", "pkill ")
# Login session titles of the ssh connection issuing the query.
_SESSION_PREFIXES = ("sshd:", "sshd-session:")


def parse_service_state(stdout: str) -> ServiceState:
    word = stdout.strip().splitlines()[0].strip() if stdout.strip() else ""
    return _SERVICE_STATES.get(word, ServiceState.UNKNOWN)


def parse_processes(stdout: str) -> tuple[ProcessEntry, ...]:
    entries: list[ProcessEntry] = []
    for line in stdout.splitlines():
        line = line.strip()
        if not line:
            continue
        pid_text, _, command = line.partition(" ")
        if not pid_text.isdigit():
            continue
        if any(marker in f"{command} " for marker in _SELF_MATCH_MARKERS):
            continue
        if command.strip().startswith(_SESSION_PREFIXES):
            continue
        entries.append(ProcessEntry(pid=int(pid_text), command=command.strip()))
    return tuple(entries)


def parse_listening_ports(stdout: str) -> tuple[int, ...]:
    ports: set[int] = set()
    for line in stdout.splitlines():
        columns = line.split()
        if len(columns) < 4:
            continue
        _, _, port_text = columns[3].rpartition(":")
        if port_text.isdigit():
            ports.add(int(port_text))
    return tuple(sorted(ports))


def parse_disk_used_percent(stdout: str) -> float:
    lines = [line for line in stdout.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ValueError("unexpected df output")
    columns = lines[-1].split()
    if len(columns) < 5 or not columns[4].endswith("%"):
        raise ValueError(f"unexpected df line: {lines[-1]!r}")
    return float(columns[4].rstrip("%"))


def parse_temperature_c(stdout: str) -> float:
    return int(stdout.strip()) / 1000.0


def parse_memory_free_bytes(stdout: str) -> int:
    values: dict[str, int] = {}
    for line in stdout.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if parts and parts[0].isdigit():
            values[key.strip()] = int(parts[0]) * 1024
    for key in ("MemAvailable", "MemFree"):
        if key in values:
            return values[key]
    raise ValueError("MemAvailable/MemFree missing from /proc/meminfo")


def parse_uptime_s(stdout: str) -> float:
    return float(stdout.split()[0])


class HealthProbe:
    """Collect a ``HealthReport`` from a fixed battery of read-only sub-checks.

    Each sub-check is best-effort: a failure is recorded in the report and the
    remaining sub-checks still run. Nothing is retried inside one probe.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        agent: AgentSettings | None = None,
        settings: HealthSettings | None = None,
        *,
        service_name: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._executor = executor
        self._agent = agent or AgentSettings()
        self._settings = settings or HealthSettings()
        self._service_name = service_name or self._agent.service_name
        self._clock = clock

    @property
    def service_name(self) -> str:
        return self._service_name

    def probe(self, target: RemoteTarget) -> HealthReport:
        """Probe ``target`` and return a fresh report.

        Raises:
            RemoteConnectionError: The reachability preflight failed.
            RemoteTimeoutError: The reachability preflight timed out.
        """

        timestamp = self._clock()
        self._executor.execute(
            target,
            remote_commands.REACHABILITY,
            timeout=self._settings.command_timeout_s,
        )

        checks: dict[str, Callable[[RemoteTarget], Any]] = {
            "service": self._check_service,
            "processes": self._check_processes,
            "ports": self._check_ports,
            "disk": self._check_disk,
            "temperature": self._check_temperature,
            "memory": self._check_memory,
            "uptime": self._check_uptime,
        }
        values: dict[str, Any] = {}
        failures: dict[str, SubCheckFailure] = {}
        incomplete = False

        pool = ThreadPoolExecutor(
            max_workers=min(self._settings.max_workers, len(checks)),
            thread_name_prefix="health",
        )
        futures: dict[Future, str] = {
            pool.submit(check, target): name for name, check in checks.items()
        }
        try:
            for future in as_completed(futures):
                name = futures[future]
                try:
                    values[name] = future.result()
                except Exception as exc:  # noqa: BLE001 - sub-checks are best-effort
                    failures[name] = SubCheckFailure(check=name, message=_describe(exc))
        except KeyboardInterrupt:
            incomplete = True
            LOGGER.warning("[Health] Probe interrupted; abandoning in-flight sub-checks.")
        finally:
            pool.shutdown(wait=not incomplete, cancel_futures=True)

        for name in checks:
            if name not in values and name not in failures:
                failures[name] = SubCheckFailure(check=name, message="interrupted before completion")

        errors = tuple(failures[name] for name in HEALTH_SUB_CHECKS if name in failures)
        for error in errors:
            LOGGER.info("[Health] Sub-check %s failed: %s", error.check, error.message)

        return HealthReport(
            timestamp=timestamp,
            target=target,
            service_state=values.get("service", ServiceState.UNKNOWN),
            processes=values.get("processes"),
            listening_ports=values.get("ports"),
            disk_used_percent=values.get("disk"),
            cpu_temperature_c=values.get("temperature"),
            memory_free_bytes=values.get("memory"),
            uptime_s=values.get("uptime"),
            errors=errors,
            incomplete=incomplete,
        )

    def _run(self, target: RemoteTarget, command: str, ok_codes: tuple[int, ...] = (0,)) -> str:
        result = self._executor.execute(
            target,
            command,
            timeout=self._settings.command_timeout_s,
            retry=False,
        )
        if result.exit_code not in ok_codes:
            raise RemoteCommandFailed(command, result.exit_code, result.stderr)
        return result.stdout

    def _check_service(self, target: RemoteTarget) -> ServiceState:
        # is-active exits 3 for inactive units and still prints the state.
        stdout = self._run(
            target,
            remote_commands.systemctl_user("is-active", self._service_name),
            ok_codes=(0, 3, 4),
        )
        return parse_service_state(stdout)

    def _check_processes(self, target: RemoteTarget) -> tuple[ProcessEntry, ...]:
        stdout = self._run(
            target,
            remote_commands.pgrep(self._agent.process_names, self._agent.process_executables),
            ok_codes=(0, 1),
        )
        return parse_processes(stdout)

    def _check_ports(self, target: RemoteTarget) -> tuple[int, ...]:
        return parse_listening_ports(self._run(target, remote_commands.LISTENING_PORTS))

    def _check_disk(self, target: RemoteTarget) -> float:
        return parse_disk_used_percent(
            self._run(target, remote_commands.disk_usage(self._settings.disk_mount))
        )

    def _check_temperature(self, target: RemoteTarget) -> float:
        return parse_temperature_c(
            self._run(target, remote_commands.read_file(self._settings.thermal_zone))
        )

    def _check_memory(self, target: RemoteTarget) -> int:
        return parse_memory_free_bytes(self._run(target, remote_commands.MEMINFO))

    def _check_uptime(self, target: RemoteTarget) -> float:
        return parse_uptime_s(self._run(target, remote_commands.UPTIME))


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"
