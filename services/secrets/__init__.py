"""Secret-store access for injecting agent credentials at start time."""

from services.secrets.models import SecretReference, VaultItem
from services.secrets.resolver import SecretResolver
from services.secrets.stores import OnePasswordStore, SecretStore

__all__ = [
    "OnePasswordStore",
    "SecretReference",
    "SecretResolver",
    "SecretStore",
    "VaultItem",
]
