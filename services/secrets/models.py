"""Secret reference models."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any

ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_URI_PREFIX = "op://"


@dataclass(frozen=True)
class SecretReference:
    """Pointer to a secret: ``store`` is the vault, ``field`` may include a section."""

    store: str
    item: str
    field: str
    env_name: str

    def __post_init__(self) -> None:
        if not ENV_NAME_RE.match(self.env_name):
            raise ValueError(f"Invalid environment variable name: {self.env_name!r}")
        for label, value in (("store", self.store), ("item", self.item), ("field", self.field)):
            if not value or not value.strip("/"):
                raise ValueError(f"Secret reference for {self.env_name} has an empty {label}")

    @property
    def uri(self) -> str:
        return f"{_URI_PREFIX}{self.store}/{self.item}/{self.field}"

    @classmethod
    def from_uri(cls, env_name: str, uri: str) -> "SecretReference":
        if not uri.startswith(_URI_PREFIX):
            raise ValueError(f"{env_name}: expected an {_URI_PREFIX} reference, got {uri!r}")
        parts = uri[len(_URI_PREFIX):].split("/")
        if len(parts) < 3 or not all(parts):
            raise ValueError(f"{env_name}: reference must look like {_URI_PREFIX}vault/item/field")
        return cls(store=parts[0], item=parts[1], field="/".join(parts[2:]), env_name=env_name)


@dataclass(frozen=True)
class VaultItem:
    """Item metadata listed from a vault. Never carries field values."""

    item_id: str
    title: str
    category: str = ""
    updated_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "title": self.title,
            "category": self.category,
            "updated_at": self.updated_at,
        }
