# SPDX-License-Identifier: Apache-2.0
"""Cross-feature keyed state bag. Last write wins, no ownership checks."""

from __future__ import annotations

from typing import Any, Iterator, Mapping

from aac_workbench.notify import Notifier


class SharedState(Notifier):
    """Open-ended bag written by features and by the context router.

    Keys are feature-owned by convention only (``boardGeneratorData``,
    ``interpretData``, ``programData``, ``selectedStudentId``, ...).
    """

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def update(self, updates: Mapping[str, Any]) -> None:
        """Shallow-merge updates. A None value removes the key."""
        if not updates:
            return
        for key, value in updates.items():
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value
        self._notify("shared_state")

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)
