"""Tests for starting the agent with injected secrets."""

from __future__ import annotations

import os
import shutil
import subprocess

import pytest

from core.errors import CredentialInvalid
from core.logging import redaction_filter
from services.health_probes import HealthProbe
from services.secrets.launcher import LAUNCH_WRAPPER, AgentLauncher, encode_environment
from services.secrets.models import SecretReference
from services.secrets.resolver import SecretResolver

SECRETS = {"anthropic/credential": "sk-ant-very-secret", "telegram/token": "123:telegram=="}


class _Store:
    def __init__(self) -> None:
        self.reads = 0

    def accessible_vaults(self, credential: str) -> set[str]:
        if credential != "token":
            raise CredentialInvalid("rejected")
        return {"openclaw_read"}

    def read(self, credential: str, reference: SecretReference) -> str:
        self.reads += 1
        return SECRETS[f"{reference.item}/{reference.field}"]

    def list_items(self, credential, vault):
        return []


REFS = (
    SecretReference("openclaw_read", "anthropic", "credential", "ANTHROPIC_API_KEY"),
    SecretReference("openclaw_read", "telegram", "token", "TELEGRAM_BOT_TOKEN"),
)


def _launcher(fake_host, store) -> AgentLauncher:
    return AgentLauncher(fake_host, SecretResolver(store), HealthProbe(fake_host))


@pytest.fixture
def stopped_host(fake_host):
    fake_host.service_active = False
    fake_host.processes.clear()
    return fake_host


def test_start_injects_values_through_stdin_only(stopped_host, target) -> None:
    result = _launcher(stopped_host, _Store()).start(target, REFS, "token")

    assert result.started
    assert result.injected == ("ANTHROPIC_API_KEY", "TELEGRAM_BOT_TOKEN")
    assert stopped_host.started_env == {
        "ANTHROPIC_API_KEY": "sk-ant-very-secret",
        "TELEGRAM_BOT_TOKEN": "123:telegram==",
    }
    assert stopped_host.wrapper == LAUNCH_WRAPPER
    for text in stopped_host.command_texts():
        for value in SECRETS.values():
            assert value not in text
    assert all(entry.retry is False for entry in stopped_host.commands if entry.stdin)


def test_start_unregisters_values_from_redaction(stopped_host, target) -> None:
    _launcher(stopped_host, _Store()).start(target, REFS, "token")
    assert redaction_filter.scrub("sk-ant-very-secret") == "sk-ant-very-secret"


def test_running_service_is_left_alone(fake_host, target) -> None:
    store = _Store()
    result = _launcher(fake_host, store).start(target, REFS, "token")

    assert result.already_running
    assert not result.started
    assert store.reads == 0
    assert fake_host.mutating_commands() == []


def test_rejected_credential_starts_nothing(stopped_host, target) -> None:
    with pytest.raises(CredentialInvalid):
        _launcher(stopped_host, _Store()).start(target, REFS, "wrong")
    assert stopped_host.mutating_commands() == []
    assert stopped_host.started_env == {}


def test_encode_environment_is_line_per_variable() -> None:
    payload = encode_environment({"B": "two words", "A": "x"})
    assert payload == "A eA==\nB dHdvIHdvcmRz\n"


SYSTEMCTL_STUB = """#!/bin/sh
[ "$1" = "--user" ] && shift
action="$1"
shift
case "$action" in
  import-environment)
    for name in "$@"; do
      eval "value=\\${$name}"
      printf '%s' "$value" > "$CAPTURE_DIR/$name"
    done
    ;;
  start)
    printf '%s' "$1" > "$CAPTURE_DIR/.started"
    ;;
  unset-environment)
    printf '%s' "$*" > "$CAPTURE_DIR/.unset"
    ;;
esac
"""


@pytest.mark.skipif(
    shutil.which("sh") is None or shutil.which("base64") is None,
    reason="needs a POSIX shell and base64",
)
def test_wrapper_hands_values_to_service_manager_byte_exact(tmp_path) -> None:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    stub = bin_dir / "systemctl"
    stub.write_text(SYSTEMCTL_STUB, encoding="utf-8")
    stub.chmod(0o755)
    wrapper = tmp_path / "warden-launch"
    wrapper.write_text(LAUNCH_WRAPPER, encoding="utf-8")
    capture = tmp_path / "capture"
    capture.mkdir()
    values = {
        "PEM_KEY": "-----BEGIN KEY-----\nabc\n-----END KEY-----\n",
        "TWO_NEWLINES": "token\n\n",
        "PLAIN": "sk-ant-plain",
    }

    completed = subprocess.run(
        ["sh", str(wrapper), "openclaw"],
        input=encode_environment(values),
        capture_output=True,
        text=True,
        env={**os.environ, "PATH": f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}", "CAPTURE_DIR": str(capture)},
        check=False,
    )

    assert completed.returncode == 0, completed.stderr
    for name, value in values.items():
        assert (capture / name).read_bytes().decode("utf-8") == value
    assert (capture / ".started").read_text(encoding="utf-8") == "openclaw"
    assert (capture / ".unset").read_text(encoding="utf-8").split() == sorted(values)
