# SPDX-License-Identifier: Apache-2.0
"""
Persisted chat session ids, one per (user, subject, feature).

Only the session id string is stored; the session itself is fetched back from
the backend. Key format::

    chat.session.<userId|anonymous>.<subjectId|none>.<featureId>
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Protocol

from aac_workbench.errors import PersistenceError


def storage_key(user_id: str | None, subject_id: str | None, feature: str) -> str:
    return f"chat.session.{user_id or 'anonymous'}.{subject_id or 'none'}.{feature}"


class SessionKeyStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, session_id: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemorySessionKeyStore:
    """Process-local store, lost on restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, session_id: str) -> None:
        self._data[key] = session_id

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileSessionKeyStore:
    """JSON-file store with atomic writes.

    A corrupt file reads as empty. Read/write failures raise PersistenceError.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text())
        except json.JSONDecodeError:
            return {}
        except OSError as exc:
            raise PersistenceError(f"Cannot read {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: dict[str, str]) -> None:
        """Atomic save: write tmp then os.replace."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, sort_keys=True))
            os.replace(str(tmp), str(self._path))
        except OSError as exc:
            raise PersistenceError(f"Cannot write {self._path}: {exc}") from exc

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, session_id: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = session_id
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)
