"""End-to-end tests for the command-line entry point against the fake host."""

from __future__ import annotations

import io
import json

import pytest

import main
from core.errors import ExitCode
from storage.controller import StorageController

WORKSPACE = "/home/openclaw/.openclaw/workspaces/main"

CONFIG = """
target:
  host: clawpi.test
  principal: openclaw
  connect_timeout_s: 1
agent:
  service_candidates: [openclaw]
kill_switch:
  poll_attempts: 2
  poll_initial_delay_s: 0
  term_grace_s: 0
  verify_attempts: 2
storage:
  var_dir: {var_dir}
  log_dir: {log_dir}
"""


@pytest.fixture
def cli(tmp_path, monkeypatch, fake_host):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "default.yaml").write_text(
        CONFIG.format(var_dir=tmp_path / "var", log_dir=tmp_path / "log"),
        encoding="utf-8",
    )
    monkeypatch.setenv("WARDEN_CONFIG_DIR", str(config_dir))
    monkeypatch.setattr(main, "make_executor", lambda settings: fake_host)
    monkeypatch.setattr("sys.stdin", io.StringIO(""))
    return fake_host


def _run(capsys, *argv: str) -> tuple[int, dict]:
    code = main.main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip().startswith("{") else {"raw": out})


def test_stop_then_status_reports_stopped(cli, capsys) -> None:
    code, payload = _run(capsys, "stop")
    assert code == ExitCode.OK
    assert payload["state"] == "stopped"
    assert payload["confirmed"] is True

    code, payload = _run(capsys, "status")
    assert code == ExitCode.OK
    assert payload["service_state"] == "stopped"
    assert payload["processes"] == []


def test_second_stop_is_already_in_state(cli, capsys) -> None:
    _run(capsys, "stop")
    code, payload = _run(capsys, "stop")

    assert code == ExitCode.OK
    assert payload["already_in_state"] is True
    assert sum("systemctl --user stop" in text for text in cli.command_texts()) == 1


def test_unreachable_status_exits_with_unreachable_code(cli, capsys) -> None:
    cli.reachable = False
    code, _ = _run(capsys, "status")
    assert code == ExitCode.UNREACHABLE == 4


def test_hard_stop_without_confirmation(cli, capsys) -> None:
    code, _ = _run(capsys, "hard-stop")
    assert code == ExitCode.CONFIRMATION_REQUIRED == 3
    assert cli.commands == []


def test_hard_stop_with_yes(cli, capsys) -> None:
    cli.ignores_term.add(102)
    code, payload = _run(capsys, "hard-stop", "--yes")
    assert code == ExitCode.OK
    assert payload["state"] == "stopped"
    assert payload["level"] == "hard_kill"


def test_hard_stop_failure_exit_code(cli, capsys) -> None:
    cli.unkillable.add(101)
    code, payload = _run(capsys, "hard-stop", "--yes")
    assert code == ExitCode.REMOTE_FAILURE
    assert payload["state"] == "failed"


def test_shutdown_with_yes_uses_admin_principal(cli, capsys) -> None:
    code, payload = _run(capsys, "shutdown", "--yes")
    assert code == ExitCode.OK
    assert payload["level"] == "host_shutdown"
    assert [entry.principal for entry in cli.commands if "shutdown" in entry.command] == ["pi"]


def test_audit_modified_accept_then_unchanged(cli, capsys) -> None:
    soul = f"{WORKSPACE}/SOUL.md"
    cli.files[soul] = b"You are a careful assistant.\n"

    code, payload = _run(capsys, "audit", "SOUL.md")
    assert code == ExitCode.OK
    assert payload["entries"][0]["classification"] == "new"

    code, payload = _run(capsys, "accept", "SOUL.md")
    assert code == ExitCode.OK
    assert payload["accepted"][0]["path"] == soul

    cli.files[soul] = b"You are a careless assistant.\n"
    code, payload = _run(capsys, "audit", "--fail-on-drift", "SOUL.md")
    assert code == ExitCode.ATTENTION
    assert payload["entries"][0]["classification"] == "modified"

    code, _ = _run(capsys, "accept", "SOUL.md")
    assert code == ExitCode.OK
    code, payload = _run(capsys, "audit", "--fail-on-drift", "SOUL.md")
    assert code == ExitCode.OK
    assert payload["entries"][0]["classification"] == "unchanged"


def test_accept_refuses_missing_files(cli, capsys) -> None:
    code, _ = _run(capsys, "accept", "MEMORY.md")
    assert code == ExitCode.FAILURE


def test_strict_status_flags_partial_collection(cli, capsys) -> None:
    cli.failing_commands["thermal_zone0"] = (1, "No such file or directory")
    code, payload = _run(capsys, "status", "--strict")
    assert code == ExitCode.ATTENTION
    assert payload["errors"][0]["check"] == "temperature"

    code, _ = _run(capsys, "status")
    assert code == ExitCode.OK


def test_interrupted_status_exits_with_interrupted_code(cli, capsys) -> None:
    cli.interrupting_commands.add("thermal_zone0")
    code, payload = _run(capsys, "status")
    assert code == ExitCode.INTERRUPTED
    assert payload["incomplete"] is True
    assert "temperature" in [error["check"] for error in payload["errors"]]


def test_text_format(cli, capsys) -> None:
    code = main.main(["status", "--format", "text"])
    out = capsys.readouterr().out
    assert code == ExitCode.OK
    assert "Service:     running" in out
    assert "Gateway:     18789 listening" in out


def test_record_stores_report(cli, capsys) -> None:
    code, _ = _run(capsys, "status", "--record")
    assert code == ExitCode.OK
    reports = StorageController.get_instance().fetch_reports(host="clawpi.test", kind="health")
    assert len(reports) == 1


def test_usage_error(cli, capsys) -> None:
    assert main.main(["explode"]) == ExitCode.USAGE


def test_start_without_credential(cli, capsys, tmp_path) -> None:
    cli.service_active = False
    cli.processes.clear()
    manifest = tmp_path / "secrets.yaml"
    manifest.write_text("secrets:\n  ANTHROPIC_API_KEY: op://openclaw_read/anthropic/credential\n", encoding="utf-8")

    code, _ = _run(capsys, "start", "--manifest", str(manifest))

    assert code == ExitCode.CREDENTIALS
    assert cli.mutating_commands() == []


def test_diagnostics_lists_every_check(cli, capsys) -> None:
    main.main(["diagnostics"])
    payload = json.loads(capsys.readouterr().out)
    assert [result["name"] for result in payload["results"]] == ["config", "logging", "binaries", "storage"]
