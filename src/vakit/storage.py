from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Protocol

from .errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def remove(self, key: str) -> None:
        self.values.pop(key, None)


class JsonFileStore:
    """String key-value store kept in a single JSON document on disk."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = Lock()
        self._values = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable store %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): value for key, value in data.items() if isinstance(value, str)}

    def _persist_locked(self) -> None:
        snapshot = json.dumps(self._values, indent=2, ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(snapshot, encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise StorageError(f"Could not write {self.path}: {exc}") from exc

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            previous = self._values.get(key)
            self._values[key] = value
            try:
                self._persist_locked()
            except StorageError:
                if previous is None:
                    self._values.pop(key, None)
                else:
                    self._values[key] = previous
                raise

    def remove(self, key: str) -> None:
        with self._lock:
            if key not in self._values:
                return
            previous = self._values.pop(key)
            try:
                self._persist_locked()
            except StorageError:
                self._values[key] = previous
                raise
