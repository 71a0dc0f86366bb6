"""
Persistent key/value store for credentials and preferences.

- Stores everything in one JSON object on disk, written through on every change.
- Writes are atomic (tmp file + os.replace) so a crash never leaves half a file.
- API is minimal: get(), set(), delete(), keys().
"""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Any, Dict

log = logging.getLogger("scrobbler.store")


class MemoryStore:
    """Same contract as JsonFileStore, nothing touches the disk."""

    def __init__(self, initial: Dict[str, Any] | None = None):
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._save()

    def delete(self, key: str) -> None:
        with self._lock:
            if key in self._data:
                del self._data[key]
                self._save()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def _save(self) -> None:
        pass


class JsonFileStore(MemoryStore):
    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            if os.path.isfile(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    self._data.update(data)
        except (OSError, ValueError) as e:
            # Corrupt or unreadable file? Start fresh.
            log.warning("Could not read %s (%s); starting with an empty store", self.path, e)
            self._data.clear()

    def _save(self) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)
