"""File-backed JSON key-value store with dotted-path access.

Used for the per-instance ``.ghost-cli`` file, the environment-scoped
``config.<env>.json`` files and the global instance registry. ``set()`` only
mutates memory; :meth:`ConfigStore.save` is the single durable write and
replaces the file atomically.
"""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping, MutableMapping
from copy import deepcopy
from pathlib import Path
from typing import Any

from .errors import ConfigError

_MISSING = object()


class ConfigStore:
    """Lazily loaded JSON mapping addressed with ``a.b.c`` keys."""

    def __init__(self, path: Path) -> None:
        """Bind the store to *path*; nothing is read until first access."""
        self.path = Path(path)
        self._values: dict[str, Any] | None = None

    @staticmethod
    def exists(path: Path) -> bool:
        """Return ``True`` when a store file is present at *path*."""
        return Path(path).is_file()

    @property
    def values(self) -> dict[str, Any]:
        """Return the loaded mapping, reading the file on first use."""
        if self._values is None:
            self._values = self._load()
        return self._values

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored at *key* or *default*."""
        node: Any = self.values
        for segment in key.split("."):
            if not isinstance(node, Mapping) or segment not in node:
                return default
            node = node[segment]
        return deepcopy(node)

    def has(self, key: str) -> bool:
        """Return ``True`` when *key* resolves to a stored value."""
        return self.get(key, _MISSING) is not _MISSING

    def set(self, key: str | Mapping[str, Any], value: Any = _MISSING) -> ConfigStore:
        """Set *key* to *value*; ``None`` deletes and a mapping is deep-merged."""
        if isinstance(key, Mapping):
            _deep_merge(self.values, key)
            return self
        if value is _MISSING:
            raise TypeError("ConfigStore.set() requires a value when given a key.")
        segments = key.split(".")
        if value is None:
            self._delete(segments)
            return self
        node: MutableMapping[str, Any] = self.values
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, MutableMapping):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = deepcopy(value)
        return self

    def save(self) -> ConfigStore:
        """Atomically write the mapping to disk as indented JSON."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = self.path.stat().st_mode & 0o777 if self.path.exists() else 0o644
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(self.values, handle, indent=2)
                handle.write("\n")
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, self.path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return self

    def reload(self) -> ConfigStore:
        """Drop in-memory changes and re-read the file on next access."""
        self._values = None
        return self

    # ------------------------------------------------------------------
    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"Config file {self.path} is not valid JSON: {exc}",
                help=f"Fix or remove {self.path} and try again.",
            ) from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self.path} must contain a JSON object.")
        return data

    def _delete(self, segments: list[str]) -> None:
        node: Any = self.values
        for segment in segments[:-1]:
            if not isinstance(node, MutableMapping) or segment not in node:
                return
            node = node[segment]
        if isinstance(node, MutableMapping):
            node.pop(segments[-1], None)


def _deep_merge(target: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, value)
            continue
        target[key] = deepcopy(value)


__all__ = ["ConfigStore"]
