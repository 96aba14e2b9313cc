"""Diagnostics routines for the storage subsystem."""

from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Any, Mapping

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(base_dir: Path | None = None, config: Mapping[str, Any] | None = None) -> DiagnosticResult:
    """Check that the baseline directory and report database are writable.

    Args:
        base_dir: Optional base directory for offline testing.
        config: Loaded configuration; read from ConfigController when omitted.
    """

    name = "storage"
    test_db = None
    try:
        if base_dir is not None:
            var_dir = base_dir / "var"
            log_dir = base_dir / "log"
        else:
            if config is None:
                from config import ConfigController

                config = ConfigController.get_instance().get_config()
            storage_config = config.get("storage", {})
            var_dir = Path(storage_config.get("var_dir", "./var/")).expanduser()
            log_dir = Path(storage_config.get("log_dir", "./log/")).expanduser()

        baseline_dir = var_dir / "baselines"
        baseline_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)

        sentinel = baseline_dir / ".diagnostics_probe"
        sentinel.write_text("ok", encoding="utf-8")
        sentinel.unlink(missing_ok=True)

        test_db = log_dir / "diagnostics_probe.db"
        with sqlite3.connect(test_db) as conn:
            conn.execute("SELECT 1")

        baselines = sorted(path.stem for path in baseline_dir.glob("*.json"))
        hosts = ", ".join(baselines) if baselines else "none yet"
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.PASS,
            details=f"Baselines at {baseline_dir} (hosts: {hosts})",
        )
    except OSError as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=f"Filesystem access failed: {exc}")
    except sqlite3.Error as exc:
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=f"SQLite probe failed: {exc}")
    finally:
        if test_db and test_db.exists():
            test_db.unlink(missing_ok=True)
