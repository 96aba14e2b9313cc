"""Escalating stop protocol for the supervised agent."""

from __future__ import annotations

import threading
import time
from typing import Callable

from config.settings import AgentSettings, KillSwitchSettings
from core.errors import EscalationBlocked, InvalidTransition, RemoteCommandFailed
from core.logging import logger as LOGGER
from core.ops_models import (
    ControllerState,
    EscalationLevel,
    HealthReport,
    RemoteTarget,
    ServiceState,
    TransitionRecord,
    TransitionResult,
)
from services import remote_commands
from services.health_probes import HealthProbe, parse_processes
from services.remote_executor import RemoteExecutor


def is_stopped(report: HealthReport) -> bool:
    """Service manager reports stopped and no matching process is left."""

    return report.service_state is ServiceState.STOPPED and report.processes == ()


def no_processes(report: HealthReport) -> bool:
    return report.processes == ()


class KillSwitchController:
    """State machine driving the agent from running to fully stopped.

    One controller exists per target per process; every mutating transition
    runs under the controller lock. HealthProbe is only used to verify the
    outcome of a transition, never to trigger one. A failed transport call
    leaves the state as it was before the transition.
    """

    _active_targets: set[tuple[str, int]] = set()
    _registry_lock = threading.Lock()

    def __init__(
        self,
        executor: RemoteExecutor,
        probe: HealthProbe,
        target: RemoteTarget,
        settings: KillSwitchSettings | None = None,
        agent: AgentSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        key = (target.host, target.port)
        with KillSwitchController._registry_lock:
            if key in KillSwitchController._active_targets:
                raise RuntimeError(
                    f"You cannot create another KillSwitchController for {target.host}:{target.port}"
                )
            KillSwitchController._active_targets.add(key)
        self._key = key
        self._executor = executor
        self._probe = probe
        self._target = target
        self._settings = settings or KillSwitchSettings()
        self._agent = agent or AgentSettings()
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._state = ControllerState.RUNNING
        self._level = EscalationLevel.RUNNING
        self._history: list[TransitionRecord] = []
        self._closed = False

    def __enter__(self) -> "KillSwitchController":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the per-target slot so a new session can start."""

        if self._closed:
            return
        with KillSwitchController._registry_lock:
            KillSwitchController._active_targets.discard(self._key)
        self._closed = True

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def level(self) -> EscalationLevel:
        return self._level

    @property
    def history(self) -> list[TransitionRecord]:
        return list(self._history)

    def status(self) -> HealthReport:
        """Query target health without touching the session state."""

        return self._probe.probe(self._target)

    def graceful_stop(self) -> TransitionResult:
        """Stop the service through the service manager and confirm by polling."""

        action = "stop"
        with self._lock:
            if self._state is ControllerState.STOPPED:
                return self._already_stopped(action)
            self._require_forward(EscalationLevel.GRACEFUL_STOP, action)

            before = self._probe.probe(self._target)
            if is_stopped(before):
                self._commit(ControllerState.STOPPED, self._level, "target already stopped")
                return self._result(action, True, True, "target already stopped", before)

            command = remote_commands.systemctl_user("stop", self._probe.service_name)
            LOGGER.info("[Kill] Stopping service %s on %s.", self._probe.service_name, self._target.host)
            self._run_mutating(command, self._settings.stop_timeout_s)

            report = before
            for delay in self._settings.poll_delays():
                self._sleep(delay)
                report = self._probe.probe(self._target)
                if is_stopped(report):
                    self._commit(
                        ControllerState.STOPPED,
                        EscalationLevel.GRACEFUL_STOP,
                        "service stopped",
                    )
                    return self._result(action, False, True, "service stopped", report)

            message = (
                f"service still reporting {report.service_state.value} with "
                f"{report.process_count} matching process(es); escalate with hard-stop"
            )
            LOGGER.warning("[Kill] %s", message)
            self._commit(ControllerState.GRACEFUL_STOP, EscalationLevel.GRACEFUL_STOP, message)
            return self._result(action, False, False, message, report)

    def hard_kill(self, *, confirmed: bool = False) -> TransitionResult:
        """Terminate every matching process, then force-kill survivors.

        Raises:
            EscalationBlocked: ``confirmed`` was not given; nothing is sent.
        """

        action = "hard-stop"
        if not confirmed:
            raise EscalationBlocked("hard-stop requires explicit operator confirmation")
        with self._lock:
            if self._state is ControllerState.STOPPED:
                return self._already_stopped(action)
            self._require_forward(EscalationLevel.HARD_KILL, action)

            names = self._agent.process_names
            executables = self._agent.process_executables
            LOGGER.warning(
                "[Kill] Force-stopping all %s processes on %s.",
                "/".join((*executables, *names)),
                self._target.host,
            )
            service_stop = self._executor.execute(
                self._target,
                remote_commands.systemctl_user("stop", self._probe.service_name),
                timeout=self._settings.stop_timeout_s,
                retry=False,
            )
            if not service_stop.ok:
                LOGGER.info("[Kill] Service stop exited %s; continuing with signals.", service_stop.exit_code)

            self._signal("TERM")
            self._sleep(self._settings.term_grace_s)
            survivors = self._executor.execute(
                self._target,
                remote_commands.pgrep(names, executables),
                timeout=self._settings.stop_timeout_s,
                retry=False,
            )
            killed_hard = 0
            if survivors.exit_code == 0 and parse_processes(survivors.stdout):
                LOGGER.warning("[Kill] Processes still alive after SIGTERM; sending SIGKILL.")
                self._signal("KILL")
                killed_hard = 1

            report: HealthReport | None = None
            for delay in self._settings.poll_delays(self._settings.verify_attempts):
                self._sleep(delay)
                report = self._probe.probe(self._target)
                if no_processes(report):
                    self._commit(
                        ControllerState.STOPPED,
                        EscalationLevel.HARD_KILL,
                        "all matching processes terminated",
                        {"sigkill": killed_hard},
                    )
                    return self._result(action, False, True, "all matching processes terminated", report)

            assert report is not None
            message = f"{report.process_count} matching process(es) survived SIGKILL"
            LOGGER.error("[Kill] %s", message)
            self._commit(ControllerState.FAILED, EscalationLevel.HARD_KILL, message, {"sigkill": killed_hard})
            return self._result(action, False, False, message, report)

    def host_shutdown(self, *, confirmed: bool = False) -> TransitionResult:
        """Power the host off. Completion cannot be observed over the severed link.

        Raises:
            EscalationBlocked: ``confirmed`` was not given; nothing is sent.
        """

        action = "shutdown"
        if not confirmed:
            raise EscalationBlocked("shutdown requires explicit operator confirmation")
        with self._lock:
            admin_target = self._target.with_principal(self._settings.admin_principal)
            LOGGER.warning("[Kill] Shutting down %s as %s.", self._target.host, admin_target.principal)
            self._run_mutating(self._settings.shutdown_command, self._settings.stop_timeout_s, admin_target)
            message = "shutdown command accepted; physical access is needed to power the host back on"
            self._commit(ControllerState.STOPPED, EscalationLevel.HOST_SHUTDOWN, message)
            return self._result(action, False, True, message, None)

    def _require_forward(self, level: EscalationLevel, action: str) -> None:
        if self._state is ControllerState.FAILED:
            raise InvalidTransition(f"{action}: session ended in failed state; start a new session")
        if level < self._level:
            raise InvalidTransition(
                f"{action}: session already escalated to {self._level.name.lower()}"
            )

    def _run_mutating(
        self,
        command: str,
        timeout_s: float,
        target: RemoteTarget | None = None,
    ) -> None:
        result = self._executor.execute(
            target or self._target,
            command,
            timeout=timeout_s,
            retry=False,
        )
        if not result.ok:
            raise RemoteCommandFailed(command, result.exit_code, result.stderr)

    def _signal(self, signal_name: str) -> None:
        result = self._executor.execute(
            self._target,
            remote_commands.pkill(
                self._agent.process_names,
                self._agent.process_executables,
                signal_name,
            ),
            timeout=self._settings.stop_timeout_s,
            retry=False,
        )
        # pkill: 0 = signalled, 1 = nothing matched.
        if result.exit_code not in (0, 1):
            LOGGER.warning("[Kill] pkill -%s exited %s: %s", signal_name, result.exit_code, result.stderr.strip())

    def _commit(
        self,
        state: ControllerState,
        level: EscalationLevel,
        message: str,
        metadata: dict[str, str | float | int] | None = None,
    ) -> None:
        record = TransitionRecord(
            timestamp=self._clock(),
            from_state=self._state,
            to_state=state,
            level=level,
            message=message,
            metadata=metadata or {},
        )
        self._history.append(record)
        LOGGER.info("[Kill] %s -> %s (%s)", self._state.value, state.value, message)
        self._state = state
        self._level = max(self._level, level)

    def _already_stopped(self, action: str) -> TransitionResult:
        return self._result(action, True, True, "target already stopped", None)

    def _result(
        self,
        action: str,
        already: bool,
        confirmed: bool,
        message: str,
        report: HealthReport | None,
    ) -> TransitionResult:
        return TransitionResult(
            action=action,
            state=self._state,
            level=self._level,
            already_in_state=already,
            confirmed=confirmed,
            message=message,
            report=report,
        )
