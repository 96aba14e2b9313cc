"""Copy the agent's home directory to the operator machine with rsync."""

from __future__ import annotations

from dataclasses import dataclass
import math
from pathlib import Path
import shlex
import subprocess
from typing import Any, Callable

from config.settings import ExecutorSettings, ReviewSettings
from core.logging import logger as LOGGER
from core.ops_models import RemoteTarget

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    local_dir: str
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"ok": self.ok, "local_dir": self.local_dir, "message": self.message}


class LogSync:
    """One-shot rsync pull. Failures are reported, never raised."""

    def __init__(
        self,
        settings: ReviewSettings | None = None,
        executor_settings: ExecutorSettings | None = None,
        *,
        runner: Runner | None = None,
    ) -> None:
        self._settings = settings or ReviewSettings()
        self._executor_settings = executor_settings or ExecutorSettings()
        self._runner = runner or subprocess.run

    def build_argv(self, target: RemoteTarget, remote_dir: str, local_dir: Path) -> list[str]:
        connect_timeout = max(1, int(math.ceil(target.connect_timeout_s)))
        ssh = [
            self._executor_settings.ssh_binary,
            "-p",
            str(target.port),
            "-o",
            f"ConnectTimeout={connect_timeout}",
            "-o",
            "BatchMode=yes",
        ]
        argv = [self._settings.rsync_binary, "-az", "-e", shlex.join(ssh)]
        argv.extend(f"--exclude={pattern}" for pattern in self._settings.sync_excludes)
        remote = remote_dir.rstrip("/") + "/"
        argv.extend([f"{target.destination}:{remote}", f"{local_dir}/"])
        return argv

    def sync(self, target: RemoteTarget, remote_dir: str) -> SyncResult:
        local_dir = Path(self._settings.sync_dir).expanduser()
        try:
            local_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            return SyncResult(ok=False, local_dir=str(local_dir), message=f"cannot create {local_dir}: {exc}")

        argv = self.build_argv(target, remote_dir, local_dir)
        LOGGER.info("[Review] Syncing %s:%s to %s.", target.destination, remote_dir, local_dir)
        try:
            completed = self._runner(
                argv,
                capture_output=True,
                text=True,
                timeout=self._settings.sync_timeout_s,
                check=False,
            )
        except FileNotFoundError:
            return SyncResult(ok=False, local_dir=str(local_dir), message="rsync not found")
        except subprocess.TimeoutExpired:
            return SyncResult(
                ok=False,
                local_dir=str(local_dir),
                message=f"rsync did not finish within {self._settings.sync_timeout_s:.0f}s",
            )

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            detail = stderr.splitlines()[-1] if stderr else "no error output"
            LOGGER.warning("[Review] rsync exited %s: %s", completed.returncode, detail)
            return SyncResult(
                ok=False,
                local_dir=str(local_dir),
                message=f"rsync exited {completed.returncode}: {detail}",
            )
        return SyncResult(ok=True, local_dir=str(local_dir), message="sync complete")
