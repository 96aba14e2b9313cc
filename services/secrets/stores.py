"""Secret-store backends."""

from __future__ import annotations

import json
import os
import subprocess
from typing import Callable, Mapping, Protocol

from config.settings import SecretSettings
from core.errors import CredentialInvalid, SecretUnavailable, WardenError
from core.logging import logger as LOGGER
from services.secrets.models import SecretReference, VaultItem

Runner = Callable[..., subprocess.CompletedProcess]


class SecretStore(Protocol):
    """Backend interface used by ``SecretResolver``."""

    def accessible_vaults(self, credential: str) -> set[str]:
        ...

    def read(self, credential: str, reference: SecretReference) -> str:
        ...

    def list_items(self, credential: str, vault: str) -> list[VaultItem]:
        ...


class OnePasswordStore:
    """1Password backend driving the ``op`` CLI with a service-account token.

    The token is handed to each ``op`` child through its environment only.
    """

    def __init__(
        self,
        settings: SecretSettings | None = None,
        *,
        runner: Runner | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._settings = settings or SecretSettings()
        self._runner = runner or subprocess.run
        self._environ = dict(os.environ if environ is None else environ)

    def accessible_vaults(self, credential: str) -> set[str]:
        """Return names and ids of every vault the credential can read.

        Raises:
            CredentialInvalid: ``op`` rejected the credential.
        """

        completed = self._op(credential, ["vault", "list", "--format=json"])
        if completed.returncode != 0:
            raise CredentialInvalid(
                f"secret store rejected the credential: {_first_line(completed.stderr)}"
            )
        vaults: set[str] = set()
        for entry in _json_list(completed.stdout, "vault list"):
            for key in ("name", "id"):
                if entry.get(key):
                    vaults.add(str(entry[key]))
        LOGGER.debug("[Secrets] Credential can access %d vault(s).", len(vaults))
        return vaults

    def read(self, credential: str, reference: SecretReference) -> str:
        completed = self._op(credential, ["read", "--no-newline", reference.uri])
        if completed.returncode != 0:
            raise SecretUnavailable(reference, _first_line(completed.stderr))
        return completed.stdout

    def list_items(self, credential: str, vault: str) -> list[VaultItem]:
        completed = self._op(credential, ["item", "list", "--vault", vault, "--format=json"])
        if completed.returncode != 0:
            raise WardenError(f"could not list items in vault {vault!r}: {_first_line(completed.stderr)}")
        items = [
            VaultItem(
                item_id=str(entry.get("id", "")),
                title=str(entry.get("title", "")),
                category=str(entry.get("category", "")),
                updated_at=str(entry.get("updated_at", "")),
            )
            for entry in _json_list(completed.stdout, "item list")
        ]
        return sorted(items, key=lambda item: item.title.lower())

    def _op(self, credential: str, args: list[str]) -> subprocess.CompletedProcess:
        env = dict(self._environ)
        env[self._settings.credential_env] = credential
        argv = [self._settings.op_binary, *args]
        LOGGER.debug("[Secrets] op %s", args[0] if args else "")
        try:
            return self._runner(
                argv,
                capture_output=True,
                text=True,
                env=env,
                timeout=self._settings.command_timeout_s,
                check=False,
            )
        except FileNotFoundError as exc:
            raise WardenError(f"1Password CLI not found ({self._settings.op_binary})") from exc
        except subprocess.TimeoutExpired as exc:
            raise WardenError(
                f"1Password CLI gave no answer within {self._settings.command_timeout_s:.0f}s"
            ) from exc


def _first_line(text: str | None) -> str:
    text = (text or "").strip()
    return text.splitlines()[0] if text else "no error output"


def _json_list(stdout: str, what: str) -> list[dict]:
    try:
        payload = json.loads(stdout or "[]")
    except json.JSONDecodeError as exc:
        raise WardenError(f"unexpected output from op {what}: {exc}") from exc
    if not isinstance(payload, list):
        raise WardenError(f"unexpected output from op {what}: expected a list")
    return [entry for entry in payload if isinstance(entry, dict)]
