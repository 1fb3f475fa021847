# SPDX-License-Identifier: Apache-2.0
"""
Workbench: builds every orchestration service once and wires them together.

Consumers receive the Workbench (or one of its services) explicitly; there is
no module-level shared state. Change notifications flow through each
service's ``subscribe()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Callable

from aac_workbench.chat_session import ChatBackend, ChatSessionManager
from aac_workbench.context_router import CacheKey, ContextResponseRouter
from aac_workbench.features import FeatureId, TextDirection
from aac_workbench.interpretations import InterpretationHistory
from aac_workbench.metadata import MetadataRegistry
from aac_workbench.panels import DEFAULT_TRANSITION_MS, PanelController
from aac_workbench.session_keys import SessionKeyStore
from aac_workbench.shared_state import SharedState
from aac_workbench.timer import Scheduler

logger = logging.getLogger(__name__)

# Oldest keys drop once this many are pending without a drain
MAX_PENDING_INVALIDATIONS = 256


class Workbench:
    def __init__(
        self,
        backend: ChatBackend,
        transition_ms: int = DEFAULT_TRANSITION_MS,
        scheduler: Scheduler | None = None,
        text_direction: TextDirection = TextDirection.ltr,
        persist_sessions: bool = False,
        key_store: SessionKeyStore | None = None,
        navigator: Callable[[str], None] | None = None,
        invalidate: Callable[[CacheKey], None] | None = None,
        user_id: str | None = None,
        subject_id: str | None = None,
    ) -> None:
        self.backend = backend
        self.panels = PanelController(
            transition_ms=transition_ms,
            scheduler=scheduler,
            text_direction=text_direction,
            navigator=navigator,
        )
        self.shared_state = SharedState()
        self.metadata = MetadataRegistry(lambda: self.panels.active_feature)
        self._invalidate = invalidate
        self._pending_invalidations: deque[CacheKey] = deque(maxlen=MAX_PENDING_INVALIDATIONS)
        self.router = ContextResponseRouter(self.shared_state, invalidate=self._on_invalidate)
        self.chat = ChatSessionManager(
            backend,
            active_feature=lambda: self.panels.active_feature,
            metadata=self.metadata,
            router=self.router,
            persist_session=persist_sessions,
            key_store=key_store,
            user_id=user_id,
            subject_id=subject_id,
        )
        self.interpretations = InterpretationHistory()

        self._seen_feature = self.panels.active_feature
        self._restore_task: asyncio.Task | None = None
        self.panels.subscribe(self._on_panels_changed)

    # -- Wiring -------------------------------------------------------------

    def _on_invalidate(self, key: CacheKey) -> None:
        self._pending_invalidations.append(key)
        if self._invalidate is not None:
            self._invalidate(key)

    def drain_invalidations(self) -> list[CacheKey]:
        """Cache keys signalled since the last drain.

        Embedders without an ``invalidate`` callback should drain after each
        send; only the newest ``MAX_PENDING_INVALIDATIONS`` keys are kept.
        """
        keys = list(self._pending_invalidations)
        self._pending_invalidations.clear()
        return keys

    def _on_panels_changed(self, _topic: str) -> None:
        feature = self.panels.active_feature
        if feature == self._seen_feature:
            return
        self._seen_feature = feature
        # The persistence key is feature-scoped: look for a stored session
        if self.chat.persist_session and self.chat.session is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._restore_task = loop.create_task(self.chat.restore_persisted_session())

    async def start(self) -> None:
        """Mount: restore the persisted session for the current key, if any."""
        await self.chat.restore_persisted_session()

    async def aclose(self) -> None:
        if self._restore_task is not None and not self._restore_task.done():
            self._restore_task.cancel()
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()

    # -- Navigation / identity ---------------------------------------------

    def navigate(self, path: str) -> FeatureId:
        return self.panels.navigate(path)

    def set_subject(self, subject_id: str | None) -> None:
        self.chat.set_subject(subject_id)
        self.shared_state.update({"selectedStudentId": subject_id})

    def snapshot(self) -> dict[str, Any]:
        return {
            "panels": self.panels.snapshot(),
            "chat": self.chat.snapshot(),
            "shared_state": self.shared_state.snapshot(),
        }
