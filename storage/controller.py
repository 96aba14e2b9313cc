"""SQLite-backed storage controller for control-plane runs."""

from __future__ import annotations

import json
from pathlib import Path
import re
import sqlite3
import threading
import time
from typing import Any, Mapping

from core.logging import logger as LOGGER
from storage.baselines import BaselineStore

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


def millis() -> int:
    """Return current time in milliseconds."""

    return int(time.time() * 1000)


class StorageController:
    """Singleton controller for local control-point storage.

    Holds the run counter, the per-run log file path, the report sink and the
    per-host baseline files.
    """

    _instance: "StorageController | None" = None
    _lock = threading.Lock()

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        if StorageController._instance is not None:
            raise RuntimeError("You cannot create another StorageController class")

        if config is None:
            from config import ConfigController

            config = ConfigController.get_instance().get_config()
        self.config = dict(config)

        var_dir, log_dir = self._resolve_storage_dirs()
        self.var_dir = var_dir
        self.log_dir = log_dir
        self.baseline_dir = var_dir / "baselines"

        self.run_id_file = var_dir / "current_run"
        self.run_id = self.get_next_run_number(var_dir)

        self.db_full_file_path = log_dir / "reports.db"
        self.conn: sqlite3.Connection | None = None
        StorageController._instance = self

    @classmethod
    def get_instance(cls) -> "StorageController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def connect(self) -> sqlite3.Connection:
        """Open the report database on first use."""

        if self.conn is None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_full_file_path, check_same_thread=False)
            self.initialize_db()
        return self.conn

    def initialize_db(self) -> None:
        assert self.conn is not None
        cursor = self.conn.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS reports (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id INTEGER,
                run_millis INTEGER,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                host TEXT,
                kind TEXT,
                data JSON
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        """Close the storage connection."""

        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def get_next_run_number(self, var_dir: Path) -> int:
        """Return the next run number, persisting to the run-id file."""

        var_dir.mkdir(parents=True, exist_ok=True)

        next_run_number = 0
        if self.run_id_file.is_file():
            current_run_number = self.run_id_file.read_text(encoding="utf-8").strip()
            if current_run_number.isdigit():
                next_run_number = int(current_run_number) + 1
        self.run_id_file.write_text(str(next_run_number), encoding="utf-8")
        return next_run_number

    def get_log_file_path(self) -> Path:
        """Return the log file path for the current run."""

        return self.log_dir / f"run_{self.run_id}.log"

    def baseline_path(self, host: str) -> Path:
        safe = _UNSAFE_NAME.sub("_", host.strip()) or "default"
        return self.baseline_dir / f"{safe}.json"

    def baseline_store(self, host: str) -> BaselineStore:
        """Return the baseline store for ``host``."""

        return BaselineStore(self.baseline_path(host))

    def add_report(self, host: str, payload: Mapping[str, Any]) -> None:
        """Record a serialized report in the local sink."""

        kind = str(payload.get("kind", "report"))
        with self._lock:
            try:
                conn = self.connect()
                with conn:
                    conn.execute(
                        """
                        INSERT INTO reports (run_id, run_millis, host, kind, data)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (self.run_id, millis(), host, kind, json.dumps(payload, sort_keys=True)),
                    )
            except sqlite3.Error as exc:
                LOGGER.warning("[Storage] Could not record %s report: %s", kind, exc)

    def fetch_reports(self, host: str | None = None, kind: str | None = None) -> list[dict[str, Any]]:
        """Return recorded reports, oldest first."""

        query = "SELECT data FROM reports"
        clauses: list[str] = []
        params: list[Any] = []
        if host is not None:
            clauses.append("host = ?")
            params.append(host)
        if kind is not None:
            clauses.append("kind = ?")
            params.append(kind)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY record_id"
        with self._lock:
            rows = self.connect().execute(query, params).fetchall()
        return [json.loads(row[0]) for row in rows]

    def _resolve_storage_dirs(self) -> tuple[Path, Path]:
        """Resolve storage directories from configuration."""

        storage_config = self.config.get("storage", {})
        var_dir = storage_config.get("var_dir", "./var/")
        log_dir = storage_config.get("log_dir", "./log/")

        return Path(var_dir).expanduser(), Path(log_dir).expanduser()
