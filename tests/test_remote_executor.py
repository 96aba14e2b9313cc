"""Tests for the ssh-based remote executor."""

from __future__ import annotations

import subprocess

import pytest

from config.settings import ExecutorSettings
from core.errors import RemoteConnectionError, RemoteTimeoutError
from core.ops_models import RemoteTarget
from services.remote_executor import RemoteExecutor, quote_path


class _ScriptedRunner:
    def __init__(self, *outcomes) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict] = []

    def __call__(self, argv, **kwargs):
        self.calls.append({"argv": argv, **kwargs})
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        returncode, stdout, stderr = outcome
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


def _executor(runner, sleeps=None) -> RemoteExecutor:
    return RemoteExecutor(
        ExecutorSettings(command_timeout_s=5.0),
        runner=runner,
        sleep=(sleeps.append if sleeps is not None else lambda _s: None),
    )


def test_build_argv_uses_batch_mode_and_port() -> None:
    executor = _executor(_ScriptedRunner())
    argv = executor.build_argv(RemoteTarget("pi.lan", "openclaw", port=2222, connect_timeout_s=2.5), "uptime")

    assert argv[:3] == ["ssh", "-p", "2222"]
    assert "ConnectTimeout=3" in argv
    assert "BatchMode=yes" in argv
    assert argv[-2:] == ["openclaw@pi.lan", "uptime"]


def test_build_argv_rejects_option_like_host() -> None:
    executor = _executor(_ScriptedRunner())
    with pytest.raises(ValueError):
        executor.build_argv(RemoteTarget("-oProxyCommand=x", "openclaw"), "true")


def test_execute_returns_remote_failure_without_retry(target) -> None:
    runner = _ScriptedRunner((3, "inactive\n", ""))
    result = _executor(runner).execute(target, "systemctl --user is-active openclaw")

    assert result.exit_code == 3
    assert result.stdout == "inactive\n"
    assert len(runner.calls) == 1


def test_execute_reconnects_once_after_transport_failure(target) -> None:
    sleeps: list[float] = []
    runner = _ScriptedRunner((255, "", "ssh: connect to host clawpi.test port 22: Connection refused"), (0, "ok\n", ""))
    result = _executor(runner, sleeps).execute(target, "true")

    assert result.ok
    assert len(runner.calls) == 2
    assert len(sleeps) == 1


def test_execute_gives_up_after_second_transport_failure(target) -> None:
    runner = _ScriptedRunner((255, "", "No route to host"), (255, "", "No route to host"))
    with pytest.raises(RemoteConnectionError) as excinfo:
        _executor(runner).execute(target, "true")

    assert isinstance(excinfo.value, ConnectionError)
    assert "No route to host" in str(excinfo.value)
    assert len(runner.calls) == 2


def test_mutating_command_is_never_retried(target) -> None:
    runner = _ScriptedRunner((255, "", "Connection reset"))
    with pytest.raises(RemoteConnectionError):
        _executor(runner).execute(target, "pkill -TERM openclaw", retry=False)
    assert len(runner.calls) == 1


def test_timeout_is_reported_as_ambiguous_and_not_retried(target) -> None:
    runner = _ScriptedRunner(subprocess.TimeoutExpired(cmd="ssh", timeout=6.0))
    with pytest.raises(RemoteTimeoutError) as excinfo:
        _executor(runner).execute(target, "systemctl --user stop openclaw", timeout=5.0)

    assert isinstance(excinfo.value, TimeoutError)
    assert excinfo.value.timeout_s == 5.0
    assert len(runner.calls) == 1
    assert runner.calls[0]["timeout"] == pytest.approx(6.0)


def test_stdin_is_passed_through_to_the_runner(target) -> None:
    runner = _ScriptedRunner((0, "", ""))
    _executor(runner).execute(target, "cat > /tmp/x", stdin="payload", retry=False)
    assert runner.calls[0]["input"] == "payload"


def test_quote_path_keeps_home_expandable() -> None:
    assert quote_path("~/.openclaw/SOUL.md") == '"$HOME"/.openclaw/SOUL.md'
    assert quote_path("/tmp/a b") == "'/tmp/a b'"
    assert quote_path("~/x; rm -rf /") == "\"$HOME\"/'x; rm -rf /'"
