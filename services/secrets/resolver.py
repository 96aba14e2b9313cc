"""Resolve secret references into an injectable environment mapping."""

from __future__ import annotations

from typing import Iterable

from core.errors import CredentialInvalid, SecretUnavailable
from core.logging import logger as LOGGER, redaction_filter
from services.secrets.models import SecretReference
from services.secrets.stores import SecretStore


class SecretResolver:
    """All-or-nothing resolution against one ``SecretStore`` backend.

    The credential is checked first by listing accessible vaults; a reference
    outside that set fails the batch before anything is read. Nothing is
    cached between calls.
    """

    def __init__(self, store: SecretStore) -> None:
        self._store = store

    @property
    def store(self) -> SecretStore:
        return self._store

    def resolve(self, references: Iterable[SecretReference], credential: str) -> dict[str, str]:
        """Return ``{env_name: value}`` for every reference.

        Raises:
            CredentialInvalid: Credential missing or rejected.
            SecretUnavailable: A reference could not be resolved. No partial
                mapping is returned.
        """

        if not credential:
            raise CredentialInvalid("no secret-store credential provided")
        references = tuple(references)
        seen: set[str] = set()
        for reference in references:
            if reference.env_name in seen:
                raise ValueError(f"Duplicate secret reference for {reference.env_name}")
            seen.add(reference.env_name)

        redaction_filter.register([credential])
        try:
            vaults = self._store.accessible_vaults(credential)
            for reference in references:
                if reference.store not in vaults:
                    raise SecretUnavailable(reference, "vault not accessible with this credential")

            resolved: dict[str, str] = {}
            try:
                for reference in references:
                    value = self._store.read(credential, reference)
                    if not value:
                        raise SecretUnavailable(reference, "empty value")
                    resolved[reference.env_name] = value
            except BaseException:
                resolved.clear()
                raise
        finally:
            redaction_filter.unregister([credential])

        LOGGER.info("[Secrets] Resolved %d secret(s): %s", len(resolved), ", ".join(sorted(resolved)))
        return resolved
