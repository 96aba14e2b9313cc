"""Configuration controller for YAML-based settings."""

from __future__ import annotations

import copy
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Mapping

import yaml


DEFAULT_CONFIG: dict[str, Any] = {
    "logging_level": "INFO",
    "file_logging_enabled": False,
    "target": {
        "host": "clawpi.local",
        "principal": "openclaw",
        "port": 22,
        "connect_timeout_s": 10.0,
    },
    "executor": {
        "ssh_binary": "ssh",
        "command_timeout_s": 30.0,
        "strict_host_key_checking": "accept-new",
        "extra_options": [],
    },
    "agent": {
        "service_candidates": ["openclaw", "openclaw-gateway"],
        "process_names": ["node"],
        "process_executables": ["openclaw"],
        "gateway_port": 18789,
        "home_dir": "~/.openclaw",
        "workspace_marker": "SOUL.md",
        "launch_wrapper_path": "~/.local/bin/warden-launch",
    },
    "health": {
        "max_workers": 4,
        "command_timeout_s": 10.0,
        "thermal_zone": "/sys/class/thermal/thermal_zone0/temp",
        "disk_mount": "/",
    },
    "kill_switch": {
        "stop_timeout_s": 60.0,
        "poll_attempts": 5,
        "poll_initial_delay_s": 1.0,
        "poll_backoff_factor": 2.0,
        "poll_max_delay_s": 8.0,
        "term_grace_s": 2.0,
        "verify_attempts": 3,
        "admin_principal": "pi",
        "shutdown_command": "sudo shutdown -h now",
    },
    "drift": {
        "tracked_files": ["SOUL.md", "MEMORY.md", "AGENTS.md", "TOOLS.md"],
        "command_timeout_s": 15.0,
    },
    "secrets": {
        "manifest": "config/secrets.yaml",
        "credential_env": "OP_SERVICE_ACCOUNT_TOKEN",
        "op_binary": "op",
        "command_timeout_s": 20.0,
        "rw_vault": "openclaw_write",
    },
    "review": {
        "sync_logs": True,
        "sync_dir": "~/openclaw-logs",
        "rsync_binary": "rsync",
        "sync_timeout_s": 600.0,
        "sync_excludes": ["node_modules/", "*.sock", "*.pid"],
        "manual_checks": [
            "Review virtual card transaction history",
            "Review telephony usage and charges",
            "Check for agent runtime updates and security advisories",
            "Rotate API keys if anything looks off",
            "Review SOUL.md and MEMORY.md for unexpected changes",
        ],
    },
    "storage": {
        "var_dir": "./var/",
        "log_dir": "./log/",
        "record_reports": False,
    },
}

# Environment variable -> (section, key, caster)
ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "CLAWPI_HOST": ("target", "host", str),
    "CLAWPI_USER": ("target", "principal", str),
    "CLAWPI_SSH_PORT": ("target", "port", int),
    "CLAWPI_CONNECT_TIMEOUT": ("target", "connect_timeout_s", float),
    "CLAWPI_OP_RW_VAULT": ("secrets", "rw_vault", str),
    "CLAWPI_LOG_DIR": ("review", "sync_dir", str),
}


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading configuration."""

    _instance: "ConfigController | None" = None

    def __init__(
        self,
        config_file: str = "default.yaml",
        *,
        config_dir: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        if config_dir is None:
            config_dir = Path(os.environ.get("WARDEN_CONFIG_DIR", "config"))
        config_dir = config_dir.expanduser()
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self._environ = dict(os.environ if environ is None else environ)
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from defaults, YAML files and the environment."""

        config = copy.deepcopy(DEFAULT_CONFIG)
        if self.paths.config_file.exists():
            with self.paths.config_file.open("r", encoding="utf-8") as file:
                file_config = yaml.safe_load(file) or {}
            config = self._deep_merge(config, file_config)

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = yaml.safe_load(file) or {}
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._apply_environment(config)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return copy.deepcopy(self.config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _apply_environment(self, config: dict[str, Any]) -> dict[str, Any]:
        """Overlay the CLAWPI_* environment variables onto the merged config."""

        normalized = dict(config)
        for env_name, (section, key, caster) in ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw is None or raw == "":
                continue
            section_cfg = dict(normalized.get(section) or {})
            try:
                section_cfg[key] = caster(raw)
            except ValueError as exc:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}") from exc
            normalized[section] = section_cfg
        return normalized
