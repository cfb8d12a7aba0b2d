"""
Memory persistence interface and the two shipped backends.

A backend stores opaque text blobs under ``(scope, key)``. The memory
subsystem serialises items to JSON before handing them over, so any
key-value or relational store can implement the same two methods.
"""

from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Protocol

_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class MemoryBackend(Protocol):
    def save(self, scope: str, key: str, blob: str) -> None: ...

    def load(self, scope: str, key: str) -> str | None: ...


class InMemoryBackend:
    """Process-local backend, mainly for tests."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def save(self, scope: str, key: str, blob: str) -> None:
        with self._lock:
            self._data[(scope, key)] = blob

    def load(self, scope: str, key: str) -> str | None:
        with self._lock:
            return self._data.get((scope, key))

    def keys(self) -> list[tuple[str, str]]:
        with self._lock:
            return sorted(self._data)


class JsonFileBackend:
    """Stores each blob as ``<root>/<scope>/<key>.json``."""

    def __init__(self, root: str | Path = ".collabcore/memory") -> None:
        self.root = Path(root)

    def _path(self, scope: str, key: str) -> Path:
        return self.root / _SAFE_NAME.sub("_", scope) / f"{_SAFE_NAME.sub('_', key)}.json"

    def save(self, scope: str, key: str, blob: str) -> None:
        path = self._path(scope, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        json.loads(blob)  # raises on malformed blobs before the file is touched
        tmp = path.with_suffix(".tmp")
        tmp.write_text(blob, encoding="utf-8")
        tmp.replace(path)

    def load(self, scope: str, key: str) -> str | None:
        path = self._path(scope, key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")
