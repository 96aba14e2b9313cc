"""Shared fixtures: an in-memory stand-in for the supervised host."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import hashlib
import threading

import pytest

from config.settings import AgentSettings, KillSwitchSettings
from core.errors import RemoteConnectionError
from core.ops_models import CommandResult, RemoteTarget
from services import remote_commands
from services.discovery import find_marker_command
from services.remote_executor import quote_path

WORKSPACE = "/home/openclaw/.openclaw/workspaces/main"


@dataclass
class ExecutedCommand:
    principal: str
    command: str
    stdin: str | None
    retry: bool


@dataclass
class FakeRemoteHost:
    """Answers the commands the control plane sends, backed by plain dicts.

    ``service_pids`` stop with the unit; ``ignores_term`` survive SIGTERM;
    ``unkillable`` survive SIGKILL as well. ``session_processes`` show up in
    process listings but are never signalled, like the ssh login session.
    Commands containing an ``interrupting_commands`` marker raise
    KeyboardInterrupt as if the operator pressed Ctrl-C.
    """

    reachable: bool = True
    units: tuple[str, ...] = ("openclaw",)
    service_active: bool = True
    processes: dict[int, str] = field(
        default_factory=lambda: {101: "openclaw gateway", 102: "node /opt/openclaw/index.js"}
    )
    service_pids: set[int] = field(default_factory=lambda: {101, 102})
    ignores_term: set[int] = field(default_factory=set)
    unkillable: set[int] = field(default_factory=set)
    stop_exit_code: int = 0
    ports: tuple[int, ...] = (22, 18789)
    files: dict[str, bytes] = field(default_factory=dict)
    workspace_dir: str | None = WORKSPACE
    failing_commands: dict[str, tuple[int, str]] = field(default_factory=dict)
    session_processes: dict[int, str] = field(default_factory=dict)
    interrupting_commands: set[str] = field(default_factory=set)
    shutdown_allowed: bool = True
    powered_off: bool = False
    wrapper: str | None = None
    started_env: dict[str, str] = field(default_factory=dict)
    commands: list[ExecutedCommand] = field(default_factory=list)
    agent: AgentSettings = field(default_factory=AgentSettings)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def execute(
        self,
        target: RemoteTarget,
        command: str,
        timeout: float | None = None,
        *,
        stdin: str | None = None,
        retry: bool = True,
    ) -> CommandResult:
        with self._lock:
            self.commands.append(ExecutedCommand(target.principal, command, stdin, retry))
            if not self.reachable or self.powered_off:
                raise RemoteConnectionError(target.host, "Connection timed out")
            if any(marker in command for marker in self.interrupting_commands):
                raise KeyboardInterrupt
            for marker, (code, stderr) in self.failing_commands.items():
                if marker in command:
                    return CommandResult("", stderr, code)
            return self._dispatch(target, command, stdin)

    def command_texts(self) -> list[str]:
        return [entry.command for entry in self.commands]

    def mutating_commands(self) -> list[str]:
        markers = ("systemctl --user stop", "pkill ", "shutdown", "cat >")
        return [text for text in self.command_texts() if any(m in text for m in markers)]

    def _dispatch(self, target: RemoteTarget, command: str, stdin: str | None) -> CommandResult:
        if command == remote_commands.REACHABILITY:
            return CommandResult("", "", 0)
        if "systemctl --user is-active" in command:
            state = "active" if self.service_active else "inactive"
            return CommandResult(f"{state}\n", "", 0 if self.service_active else 3)
        if "systemctl --user show" in command:
            unit = command.rsplit(" ", 1)[-1]
            return CommandResult("loaded\n" if unit in self.units else "not-found\n", "", 0)
        if "systemctl --user stop" in command:
            if self.stop_exit_code != 0:
                return CommandResult("", "Failed to stop openclaw.service", self.stop_exit_code)
            self.service_active = False
            for pid in list(self.processes):
                if pid in self.service_pids and pid not in self.ignores_term and pid not in self.unkillable:
                    del self.processes[pid]
            return CommandResult("", "", 0)
        if "pgrep -a" in command:
            listed = {**self.session_processes, **self.processes}
            lines = "".join(f"{pid} {cmd}\n" for pid, cmd in sorted(listed.items()))
            return CommandResult(lines, "", 0 if lines else 1)
        if "pkill -TERM" in command:
            return self._signal(lambda pid: pid not in self.ignores_term and pid not in self.unkillable)
        if "pkill -KILL" in command:
            return self._signal(lambda pid: pid not in self.unkillable)
        if command == remote_commands.LISTENING_PORTS:
            lines = "".join(f"LISTEN 0 511 0.0.0.0:{port} 0.0.0.0:*\n" for port in self.ports)
            return CommandResult(lines, "", 0)
        if command.startswith("df -P"):
            return CommandResult(
                "Filesystem 1024-blocks Used Available Capacity Mounted on\n"
                "/dev/root 30000000 12000000 18000000 41% /\n",
                "",
                0,
            )
        if command == remote_commands.read_file("/sys/class/thermal/thermal_zone0/temp"):
            return CommandResult("48312\n", "", 0)
        if command == remote_commands.MEMINFO:
            return CommandResult("MemTotal: 8000000 kB\nMemFree: 1000000 kB\nMemAvailable: 4000000 kB\n", "", 0)
        if command == remote_commands.UPTIME:
            return CommandResult("93784.12 180000.00\n", "", 0)
        if "sha256sum --" in command:
            return self._sha256(command)
        if command == find_marker_command(self.agent.home_dir, self.agent.workspace_marker):
            out = f"{self.workspace_dir}/{self.agent.workspace_marker}\n" if self.workspace_dir else ""
            return CommandResult(out, "", 0)
        if "shutdown" in command:
            if target.principal != "pi" or not self.shutdown_allowed:
                return CommandResult("", "sudo: a password is required", 1)
            self.powered_off = True
            return CommandResult("", "", 0)
        if "cat >" in command:
            self.wrapper = stdin
            return CommandResult("", "", 0)
        if command.startswith(quote_path(self.agent.launch_wrapper_path)):
            return self._launch(stdin or "")
        return CommandResult("", f"sh: unexpected command: {command}", 127)

    def _signal(self, dies) -> CommandResult:
        matched = bool(self.processes)
        for pid in list(self.processes):
            if dies(pid):
                del self.processes[pid]
        return CommandResult("", "", 0 if matched else 1)

    def _sha256(self, command: str) -> CommandResult:
        for path, content in self.files.items():
            if command == remote_commands.sha256sum(path):
                digest = hashlib.sha256(content).hexdigest()
                return CommandResult(f"{digest}  {path}\n", "", 0)
        return CommandResult("", "", remote_commands.FILE_ABSENT_EXIT)

    def _launch(self, payload: str) -> CommandResult:
        for line in payload.splitlines():
            name, _, encoded = line.partition(" ")
            self.started_env[name] = base64.b64decode(encoded).decode("utf-8")
        self.service_active = True
        self.processes[201] = "openclaw gateway"
        self.service_pids.add(201)
        return CommandResult("", "", 0)


@pytest.fixture
def target() -> RemoteTarget:
    return RemoteTarget(host="clawpi.test", principal="openclaw", port=22, connect_timeout_s=1.0)


@pytest.fixture
def fake_host() -> FakeRemoteHost:
    return FakeRemoteHost()


@pytest.fixture
def fast_kill_settings() -> KillSwitchSettings:
    return KillSwitchSettings(
        poll_attempts=3,
        poll_initial_delay_s=0.0,
        term_grace_s=0.0,
        verify_attempts=2,
    )


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    from config.controller import ConfigController
    from services.kill_switch import KillSwitchController
    from storage.controller import StorageController

    for name in (
        "CLAWPI_HOST",
        "CLAWPI_USER",
        "CLAWPI_SSH_PORT",
        "CLAWPI_CONNECT_TIMEOUT",
        "CLAWPI_OP_RW_VAULT",
        "CLAWPI_LOG_DIR",
        "OP_SERVICE_ACCOUNT_TOKEN",
        "WARDEN_CONFIG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    ConfigController._instance = None
    StorageController._instance = None
    KillSwitchController._active_targets.clear()
    yield
    if StorageController._instance is not None:
        StorageController._instance.close()
    ConfigController._instance = None
    StorageController._instance = None
    KillSwitchController._active_targets.clear()
