"""Run commands on the supervised host through the system OpenSSH client."""

from __future__ import annotations

import math
import shlex
import subprocess
import time
from typing import Callable

from config.settings import ExecutorSettings
from core.errors import RemoteConnectionError, RemoteTimeoutError
from core.logging import logger as LOGGER
from core.ops_models import CommandResult, RemoteTarget

Runner = Callable[..., subprocess.CompletedProcess]

# ssh reserves 255 for its own failures (unreachable host, rejected key, ...).
SSH_TRANSPORT_FAILURE = 255


def quote_path(path: str) -> str:
    """Quote a remote path for the login shell, keeping a leading ``~/`` expandable."""

    if path == "~":
        return "\"$HOME\""
    if path.startswith("~/"):
        return "\"$HOME\"/" + shlex.quote(path[2:])
    return shlex.quote(path)


class RemoteExecutor:
    """Execute a command on a target and collect its output.

    One reconnect is attempted when the transport fails before the command
    ran. Once any exit code comes back the remote side has already run the
    command, so nothing is retried.
    """

    def __init__(
        self,
        settings: ExecutorSettings | None = None,
        *,
        runner: Runner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay_s: float = 1.0,
    ) -> None:
        self._settings = settings or ExecutorSettings()
        self._runner = runner or subprocess.run
        self._sleep = sleep
        self._retry_delay_s = max(0.0, retry_delay_s)

    @property
    def settings(self) -> ExecutorSettings:
        return self._settings

    def build_argv(self, target: RemoteTarget, command: str) -> list[str]:
        if target.host.startswith("-") or target.principal.startswith("-"):
            raise ValueError(f"Refusing suspicious target {target.destination!r}")
        connect_timeout = max(1, int(math.ceil(target.connect_timeout_s)))
        argv = [
            self._settings.ssh_binary,
            "-p",
            str(target.port),
            "-o",
            f"ConnectTimeout={connect_timeout}",
            "-o",
            "BatchMode=yes",
            "-o",
            f"StrictHostKeyChecking={self._settings.strict_host_key_checking}",
        ]
        for option in self._settings.extra_options:
            argv.extend(["-o", option])
        argv.extend([target.destination, command])
        return argv

    def execute(
        self,
        target: RemoteTarget,
        command: str,
        timeout: float | None = None,
        *,
        stdin: str | None = None,
        retry: bool = True,
    ) -> CommandResult:
        """Run ``command`` on ``target``.

        Args:
            target: Host to run on.
            command: Shell command line for the remote login shell.
            timeout: Bound on the command itself; the connect phase is bounded
                separately by the target's connect timeout.
            stdin: Optional payload written to the remote command's stdin.
                It is never logged.
            retry: Allow the single transport-level reconnect.

        Raises:
            RemoteConnectionError: Host unreachable or authentication rejected.
            RemoteTimeoutError: No response in time; the command may have run.
        """

        command_timeout = self._settings.command_timeout_s if timeout is None else float(timeout)
        attempts = 2 if retry else 1
        last_error: RemoteConnectionError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return self._run_once(target, command, command_timeout, stdin)
            except RemoteConnectionError as exc:
                last_error = exc
                if attempt < attempts:
                    LOGGER.warning(
                        "[Exec] Connection to %s failed (%s); reconnecting once.",
                        target.destination,
                        exc,
                    )
                    self._sleep(self._retry_delay_s)
        assert last_error is not None
        raise last_error

    def _run_once(
        self,
        target: RemoteTarget,
        command: str,
        timeout_s: float,
        stdin: str | None,
    ) -> CommandResult:
        argv = self.build_argv(target, command)
        LOGGER.debug("[Exec] %s $ %s", target.destination, command)
        try:
            completed = self._runner(
                argv,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout_s + target.connect_timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise RemoteTimeoutError(target.host, command, timeout_s) from exc
        except FileNotFoundError as exc:
            raise RemoteConnectionError(
                target.host, f"ssh client not found ({self._settings.ssh_binary})"
            ) from exc
        except OSError as exc:
            raise RemoteConnectionError(target.host, f"could not start ssh: {exc}") from exc

        stdout = completed.stdout or ""
        stderr = completed.stderr or ""
        if completed.returncode == SSH_TRANSPORT_FAILURE:
            detail = stderr.strip().splitlines()[-1] if stderr.strip() else "ssh transport failure"
            raise RemoteConnectionError(target.host, detail)

        LOGGER.debug(
            "[Exec] %s exit=%s stdout=%dB stderr=%dB",
            target.destination,
            completed.returncode,
            len(stdout),
            len(stderr),
        )
        return CommandResult(stdout=stdout, stderr=stderr, exit_code=int(completed.returncode))
