# SPDX-License-Identifier: Apache-2.0
"""Subscribe/notify contract shared by the stateful workbench services."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


class Notifier:
    """Holds change listeners and fans change events out to them.

    Listeners receive a short topic string ("panels", "session", ...) naming
    what changed. A listener that raises is logged and skipped so one broken
    consumer cannot stall the others.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, topic: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(topic)
            except Exception:
                logger.exception("Listener failed for topic %r", topic)
