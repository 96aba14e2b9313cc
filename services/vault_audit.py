"""List what the agent has written into its read-write vault."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core.errors import CredentialInvalid
from core.logging import logger as LOGGER, redaction_filter
from services.secrets.models import VaultItem
from services.secrets.stores import SecretStore


@dataclass(frozen=True)
class VaultAuditReport:
    vault: str
    accessible: bool
    items: tuple[VaultItem, ...] = ()
    message: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "vault": self.vault,
            "accessible": self.accessible,
            "item_count": len(self.items),
            "items": [item.to_payload() for item in self.items],
            "message": self.message,
        }


def audit_vault(store: SecretStore, credential: str, vault: str) -> VaultAuditReport:
    """Return item metadata from ``vault``. Field values are never read."""

    if not credential:
        return VaultAuditReport(vault=vault, accessible=False, message="no secret-store credential provided")
    redaction_filter.register([credential])
    try:
        try:
            vaults = store.accessible_vaults(credential)
        except CredentialInvalid as exc:
            return VaultAuditReport(vault=vault, accessible=False, message=str(exc))
        if vault not in vaults:
            LOGGER.warning("[Secrets] Vault %s is not accessible with this credential.", vault)
            return VaultAuditReport(vault=vault, accessible=False, message="vault not accessible")
        items = tuple(store.list_items(credential, vault))
    finally:
        redaction_filter.unregister([credential])

    if items:
        LOGGER.warning("[Secrets] Agent has %d item(s) in %s; confirm they are expected.", len(items), vault)
        message = "review these items to confirm they are expected"
    else:
        message = "vault is empty"
    return VaultAuditReport(vault=vault, accessible=True, items=items, message=message)
