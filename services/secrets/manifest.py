"""YAML manifest mapping environment names to secret references."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from services.secrets.models import SecretReference


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys."""


def _construct_unique_mapping(loader: _UniqueKeyLoader, node: yaml.MappingNode, deep: bool = False) -> dict:
    seen: set[Any] = set()
    for key_node, _ in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in seen:
            raise yaml.constructor.ConstructorError(
                None, None, f"duplicate key {key!r}", key_node.start_mark
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_unique_mapping,
)


def parse_manifest(data: Any) -> tuple[SecretReference, ...]:
    """Build references from an already-loaded manifest document."""

    if data is None:
        return ()
    if not isinstance(data, dict):
        raise ValueError("Secret manifest must be a mapping")
    entries = data.get("secrets", data)
    if entries is None:
        return ()
    if not isinstance(entries, dict):
        raise ValueError("'secrets' must map environment names to references")

    references: list[SecretReference] = []
    for env_name, entry in entries.items():
        env_name = str(env_name)
        if isinstance(entry, str):
            references.append(SecretReference.from_uri(env_name, entry))
        elif isinstance(entry, dict):
            missing = [key for key in ("store", "item", "field") if not entry.get(key)]
            if missing:
                raise ValueError(f"{env_name}: missing {', '.join(missing)}")
            references.append(
                SecretReference(
                    store=str(entry["store"]),
                    item=str(entry["item"]),
                    field=str(entry["field"]),
                    env_name=env_name,
                )
            )
        else:
            raise ValueError(f"{env_name}: unsupported reference {entry!r}")
    return tuple(references)


def load_manifest(path: str | Path) -> tuple[SecretReference, ...]:
    """Load a manifest file.

    Raises:
        FileNotFoundError: The manifest does not exist.
        ValueError: The manifest is malformed or repeats an environment name.
    """

    manifest_path = Path(path).expanduser()
    with manifest_path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.load(handle, Loader=_UniqueKeyLoader)
        except yaml.YAMLError as exc:
            raise ValueError(f"Secret manifest {manifest_path} is invalid: {exc}") from exc
    return parse_manifest(data)
