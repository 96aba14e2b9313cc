"""Persistent store of accepted configuration-file hashes."""

from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
import tempfile
import threading
from typing import Any

from core.logging import logger as LOGGER


@dataclass(frozen=True)
class ConfigBaseline:
    """Accepted content hash of one tracked file."""

    path: str
    content_hash: str
    captured_at: float

    def to_payload(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content_hash": self.content_hash,
            "captured_at": self.captured_at,
        }


class BaselineStore:
    """JSON file of baselines keyed by tracked path.

    The file only changes through ``accept``. Writes go to a temporary file
    in the same directory and are moved into place, so a crash never leaves a
    half-written store behind.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, path: str) -> ConfigBaseline | None:
        return self._load().get(path)

    def all(self) -> dict[str, ConfigBaseline]:
        return self._load()

    def accept(self, path: str, content_hash: str, captured_at: float) -> ConfigBaseline:
        """Record ``content_hash`` as the accepted content of ``path``."""

        if not content_hash:
            raise ValueError(f"Cannot accept an empty hash for {path}")
        baseline = ConfigBaseline(path=path, content_hash=content_hash, captured_at=float(captured_at))
        with self._lock:
            baselines = self._load()
            baselines[path] = baseline
            self._write(baselines)
        LOGGER.info("[Drift] Accepted baseline for %s (%s).", path, content_hash[:12])
        return baseline

    def _load(self) -> dict[str, ConfigBaseline]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Baseline store {self._path} is corrupt: {exc}") from exc
        entries = payload.get("baselines", {}) if isinstance(payload, dict) else {}
        baselines: dict[str, ConfigBaseline] = {}
        for path, entry in entries.items():
            if not isinstance(entry, dict) or not entry.get("content_hash"):
                LOGGER.warning("[Drift] Ignoring malformed baseline entry for %s.", path)
                continue
            baselines[path] = ConfigBaseline(
                path=path,
                content_hash=str(entry["content_hash"]),
                captured_at=float(entry.get("captured_at", 0.0)),
            )
        return baselines

    def _write(self, baselines: dict[str, ConfigBaseline]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": 1,
            "baselines": {
                path: {"content_hash": b.content_hash, "captured_at": b.captured_at}
                for path, b in sorted(baselines.items())
            },
        }
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".baselines-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
                handle.write("\n")
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
