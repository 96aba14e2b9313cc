"""Compare tracked agent files on the host against accepted baselines."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
import posixpath
import re
from typing import Any, Iterable

from config.settings import DriftSettings
from core.errors import RemoteCommandFailed
from core.logging import logger as LOGGER
from core.ops_models import RemoteTarget
from services import remote_commands
from services.remote_executor import RemoteExecutor
from storage.baselines import BaselineStore

_HASH_RE = re.compile(r"^([0-9a-f]{64})\s")


class DriftClassification(str, Enum):
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    MISSING = "missing"
    NEW = "new"


@dataclass(frozen=True)
class DriftEntry:
    """Audit outcome for one tracked path. Derived on every audit, never stored."""

    path: str
    baseline_hash: str | None
    current_hash: str | None
    classification: DriftClassification

    @property
    def drifted(self) -> bool:
        return self.classification is not DriftClassification.UNCHANGED

    def to_payload(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "baseline_hash": self.baseline_hash,
            "current_hash": self.current_hash,
            "classification": self.classification.value,
        }


def classify(baseline_hash: str | None, current_hash: str | None) -> DriftClassification:
    if baseline_hash is None:
        return DriftClassification.NEW
    if current_hash is None:
        return DriftClassification.MISSING
    if current_hash == baseline_hash:
        return DriftClassification.UNCHANGED
    return DriftClassification.MODIFIED


def resolve_tracked(tracked_files: Iterable[str], workspace_dir: str | None) -> tuple[str, ...]:
    """Anchor relative tracked paths at the agent workspace."""

    resolved: list[str] = []
    for path in tracked_files:
        if workspace_dir and not (path.startswith("/") or path.startswith("~")):
            path = posixpath.join(workspace_dir, path)
        if path not in resolved:
            resolved.append(path)
    return tuple(resolved)


def parse_sha256(stdout: str) -> str:
    match = _HASH_RE.match(stdout.strip() + " ")
    if match is None:
        raise ValueError(f"unexpected sha256sum output: {stdout.strip()[:80]!r}")
    return match.group(1)


class DriftAuditor:
    """Read-only hash comparison. Baselines are only ever changed by the operator."""

    def __init__(
        self,
        executor: RemoteExecutor,
        settings: DriftSettings | None = None,
        *,
        max_workers: int = 4,
    ) -> None:
        self._executor = executor
        self._settings = settings or DriftSettings()
        self._max_workers = max(1, int(max_workers))

    def audit(
        self,
        target: RemoteTarget,
        tracked_files: Iterable[str],
        baseline_store: BaselineStore,
    ) -> list[DriftEntry]:
        """Classify every tracked path against ``baseline_store``.

        Raises:
            RemoteConnectionError: Target unreachable.
            RemoteTimeoutError: A hash command got no answer in time.
            RemoteCommandFailed: A file exists but could not be hashed.
        """

        paths = tuple(tracked_files)
        current = self.current_hashes(target, paths)
        baselines = baseline_store.all()
        entries: list[DriftEntry] = []
        for path in paths:
            baseline = baselines.get(path)
            baseline_hash = baseline.content_hash if baseline else None
            entry = DriftEntry(
                path=path,
                baseline_hash=baseline_hash,
                current_hash=current[path],
                classification=classify(baseline_hash, current[path]),
            )
            if entry.drifted:
                LOGGER.info("[Drift] %s: %s", entry.classification.value, path)
            entries.append(entry)
        return entries

    def current_hashes(self, target: RemoteTarget, paths: Iterable[str]) -> dict[str, str | None]:
        """Hash each path on the host; ``None`` marks a file that does not exist."""

        paths = tuple(paths)
        if not paths:
            return {}
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(paths)),
            thread_name_prefix="drift",
        ) as pool:
            futures = {path: pool.submit(self._hash_one, target, path) for path in paths}
            # Collect in tracked order so the first failure reported is deterministic.
            return {path: futures[path].result() for path in paths}

    def _hash_one(self, target: RemoteTarget, path: str) -> str | None:
        command = remote_commands.sha256sum(path)
        result = self._executor.execute(
            target,
            command,
            timeout=self._settings.command_timeout_s,
        )
        if result.ok:
            return parse_sha256(result.stdout)
        if result.exit_code == remote_commands.FILE_ABSENT_EXIT:
            return None
        raise RemoteCommandFailed(command, result.exit_code, result.stderr)
