"""Diagnostics routines for the configuration subsystem."""

from __future__ import annotations

from pathlib import Path

import yaml

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(base_dir: Path | None = None, *, config_dir: Path | None = None) -> DiagnosticResult:
    """Validate that the control-plane config files parse.

    Args:
        base_dir: Optional base directory holding a `config/` folder.
        config_dir: Explicit config directory; wins over ``base_dir``.

    Returns:
        Diagnostic result indicating config readiness.
    """

    name = "config"
    try:
        if config_dir is None:
            root_dir = base_dir if base_dir is not None else Path.cwd()
            config_dir = root_dir / "config"
        default_config = config_dir / "default.yaml"
        override_config = config_dir / "override.yaml"

        if not default_config.exists():
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.WARN,
                details=f"No default config at {default_config}; using built-in defaults",
            )

        yaml.safe_load(default_config.read_text(encoding="utf-8"))
        if override_config.exists():
            yaml.safe_load(override_config.read_text(encoding="utf-8"))

        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.PASS,
            details=f"Config files readable at {config_dir}",
        )
    except OSError as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Config access failed: {exc}",
        )
    except yaml.YAMLError as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Config is not valid YAML: {exc}",
        )
