"""Typed settings handed to each component at construction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from core.ops_models import RemoteTarget


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = config.get(name) if isinstance(config, Mapping) else None
    return section if isinstance(section, Mapping) else {}


def _str_tuple(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value if str(item))
    return default


def target_from_config(
    config: Mapping[str, Any],
    *,
    host: str | None = None,
    principal: str | None = None,
    port: int | None = None,
    connect_timeout_s: float | None = None,
) -> RemoteTarget:
    """Build the invocation target; explicit arguments win over config."""

    target_cfg = _section(config, "target")
    return RemoteTarget(
        host=host or str(target_cfg.get("host", "clawpi.local")),
        principal=principal or str(target_cfg.get("principal", "openclaw")),
        port=int(port if port is not None else target_cfg.get("port", 22)),
        connect_timeout_s=float(
            connect_timeout_s
            if connect_timeout_s is not None
            else target_cfg.get("connect_timeout_s", 10.0)
        ),
    )


@dataclass(frozen=True)
class ExecutorSettings:
    ssh_binary: str = "ssh"
    command_timeout_s: float = 30.0
    strict_host_key_checking: str = "accept-new"
    extra_options: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ExecutorSettings":
        cfg = _section(config, "executor")
        return cls(
            ssh_binary=str(cfg.get("ssh_binary", cls.ssh_binary)),
            command_timeout_s=float(cfg.get("command_timeout_s", cls.command_timeout_s)),
            strict_host_key_checking=str(
                cfg.get("strict_host_key_checking", cls.strict_host_key_checking)
            ),
            extra_options=_str_tuple(cfg.get("extra_options"), ()),
        )


@dataclass(frozen=True)
class AgentSettings:
    """Where and how the supervised agent runs on the target."""

    service_candidates: tuple[str, ...] = ("openclaw",)
    # Matched by exact process name.
    process_names: tuple[str, ...] = ("node",)
    # Matched against the first word of the command line.
    process_executables: tuple[str, ...] = ("openclaw",)
    gateway_port: int = 18789
    home_dir: str = "~/.openclaw"
    workspace_marker: str = "SOUL.md"
    launch_wrapper_path: str = "~/.local/bin/warden-launch"

    @property
    def service_name(self) -> str:
        return self.service_candidates[0]

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AgentSettings":
        cfg = _section(config, "agent")
        return cls(
            service_candidates=_str_tuple(cfg.get("service_candidates"), cls.service_candidates),
            process_names=_str_tuple(cfg.get("process_names"), cls.process_names),
            process_executables=_str_tuple(cfg.get("process_executables"), cls.process_executables),
            gateway_port=int(cfg.get("gateway_port", cls.gateway_port)),
            home_dir=str(cfg.get("home_dir", cls.home_dir)),
            workspace_marker=str(cfg.get("workspace_marker", cls.workspace_marker)),
            launch_wrapper_path=str(cfg.get("launch_wrapper_path", cls.launch_wrapper_path)),
        )


@dataclass(frozen=True)
class HealthSettings:
    max_workers: int = 4
    command_timeout_s: float = 10.0
    thermal_zone: str = "/sys/class/thermal/thermal_zone0/temp"
    disk_mount: str = "/"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HealthSettings":
        cfg = _section(config, "health")
        return cls(
            max_workers=max(1, int(cfg.get("max_workers", cls.max_workers))),
            command_timeout_s=float(cfg.get("command_timeout_s", cls.command_timeout_s)),
            thermal_zone=str(cfg.get("thermal_zone", cls.thermal_zone)),
            disk_mount=str(cfg.get("disk_mount", cls.disk_mount)),
        )


@dataclass(frozen=True)
class KillSwitchSettings:
    stop_timeout_s: float = 60.0
    poll_attempts: int = 5
    poll_initial_delay_s: float = 1.0
    poll_backoff_factor: float = 2.0
    poll_max_delay_s: float = 8.0
    term_grace_s: float = 2.0
    verify_attempts: int = 3
    admin_principal: str = "pi"
    shutdown_command: str = "sudo shutdown -h now"

    def poll_delays(self, attempts: int | None = None) -> list[float]:
        """Backoff schedule for verification polls."""

        count = self.poll_attempts if attempts is None else attempts
        delays: list[float] = []
        delay = self.poll_initial_delay_s
        for _ in range(max(1, count)):
            delays.append(min(delay, self.poll_max_delay_s))
            delay *= self.poll_backoff_factor
        return delays

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "KillSwitchSettings":
        cfg = _section(config, "kill_switch")
        return cls(
            stop_timeout_s=float(cfg.get("stop_timeout_s", cls.stop_timeout_s)),
            poll_attempts=max(1, int(cfg.get("poll_attempts", cls.poll_attempts))),
            poll_initial_delay_s=float(cfg.get("poll_initial_delay_s", cls.poll_initial_delay_s)),
            poll_backoff_factor=max(1.0, float(cfg.get("poll_backoff_factor", cls.poll_backoff_factor))),
            poll_max_delay_s=float(cfg.get("poll_max_delay_s", cls.poll_max_delay_s)),
            term_grace_s=float(cfg.get("term_grace_s", cls.term_grace_s)),
            verify_attempts=max(1, int(cfg.get("verify_attempts", cls.verify_attempts))),
            admin_principal=str(cfg.get("admin_principal", cls.admin_principal)),
            shutdown_command=str(cfg.get("shutdown_command", cls.shutdown_command)),
        )


@dataclass(frozen=True)
class DriftSettings:
    tracked_files: tuple[str, ...] = ("SOUL.md", "MEMORY.md", "AGENTS.md", "TOOLS.md")
    command_timeout_s: float = 15.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "DriftSettings":
        cfg = _section(config, "drift")
        return cls(
            tracked_files=_str_tuple(cfg.get("tracked_files"), cls.tracked_files),
            command_timeout_s=float(cfg.get("command_timeout_s", cls.command_timeout_s)),
        )


@dataclass(frozen=True)
class SecretSettings:
    manifest: str = "config/secrets.yaml"
    credential_env: str = "OP_SERVICE_ACCOUNT_TOKEN"
    op_binary: str = "op"
    command_timeout_s: float = 20.0
    rw_vault: str = "openclaw_write"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SecretSettings":
        cfg = _section(config, "secrets")
        return cls(
            manifest=str(cfg.get("manifest", cls.manifest)),
            credential_env=str(cfg.get("credential_env", cls.credential_env)),
            op_binary=str(cfg.get("op_binary", cls.op_binary)),
            command_timeout_s=float(cfg.get("command_timeout_s", cls.command_timeout_s)),
            rw_vault=str(cfg.get("rw_vault", cls.rw_vault)),
        )


@dataclass(frozen=True)
class ReviewSettings:
    sync_logs: bool = True
    sync_dir: str = "~/openclaw-logs"
    rsync_binary: str = "rsync"
    sync_timeout_s: float = 600.0
    sync_excludes: tuple[str, ...] = ("node_modules/", "*.sock", "*.pid")
    manual_checks: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ReviewSettings":
        cfg = _section(config, "review")
        return cls(
            sync_logs=bool(cfg.get("sync_logs", cls.sync_logs)),
            sync_dir=str(cfg.get("sync_dir", cls.sync_dir)),
            rsync_binary=str(cfg.get("rsync_binary", cls.rsync_binary)),
            sync_timeout_s=float(cfg.get("sync_timeout_s", cls.sync_timeout_s)),
            sync_excludes=_str_tuple(cfg.get("sync_excludes"), cls.sync_excludes),
            manual_checks=_str_tuple(cfg.get("manual_checks"), ()),
        )
