"""Key-value persistence used by the override store."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    """Persistence contract: string values keyed by string."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Dictionary backed store used by tests and single-process deployments."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


def _base_root() -> Path:
    env_root = os.getenv("OTPLUS_STORAGE_ROOT")
    if env_root:
        return Path(env_root).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "storage"


class FileKeyValueStore:
    """Stores each key as a file under a root directory."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = root or _base_root()

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key)
        return self._root / f"{safe}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


__all__ = ["FileKeyValueStore", "InMemoryKeyValueStore", "KeyValueStore"]
