# SPDX-License-Identifier: Apache-2.0
"""
Routes structured ``contextData`` from assistant replies into shared state.

The mapping is a fixed table: each route names the top-level keys it reacts
to, the shared-state slot it writes and, optionally, the cache keys it
signals. Adding a key means adding a table row. Unknown keys are ignored.

The router never invalidates caches itself; it hands keys to the
data-fetching layer through the ``invalidate`` callback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from aac_workbench.shared_state import SharedState

logger = logging.getLogger(__name__)

CacheKey = tuple[str, ...]


# ============================================================================
# Cache namespaces
# ============================================================================


def program_by_id_key(program_id: str) -> CacheKey:
    return ("/api/programs", str(program_id), "full")


def subject_programs_key(subject_id: str) -> CacheKey:
    return ("/api/students", str(subject_id), "programs")


def subject_current_program_key(subject_id: str) -> CacheKey:
    return ("/api/students", str(subject_id), "programs", "current")


def goal_by_id_key(goal_id: str) -> CacheKey:
    return ("/api/goals", str(goal_id))


def _program_cache_keys(context_data: dict[str, Any], subject_id: str | None) -> list[CacheKey]:
    keys: list[CacheKey] = []
    program = context_data.get("program")
    updated = context_data.get("programUpdated")
    if isinstance(program, dict) and program.get("id"):
        keys.append(program_by_id_key(program["id"]))
    if isinstance(updated, dict) and updated.get("programId"):
        keys.append(program_by_id_key(updated["programId"]))
    if subject_id:
        keys.append(subject_programs_key(subject_id))
        keys.append(subject_current_program_key(subject_id))
    if isinstance(updated, dict) and updated.get("goalId"):
        keys.append(goal_by_id_key(updated["goalId"]))
    return keys


# ============================================================================
# Route table
# ============================================================================


@dataclass(frozen=True, slots=True)
class ContextRoute:
    keys: tuple[str, ...]
    slot: str
    extract: Callable[[dict[str, Any]], Any]
    invalidates: Callable[[dict[str, Any], str | None], list[CacheKey]] | None = None


ROUTES: tuple[ContextRoute, ...] = (
    ContextRoute(("board",), "boardGeneratorData", lambda d: {"board": d["board"]}),
    ContextRoute(("interpret",), "interpretData", lambda d: d["interpret"]),
    ContextRoute(
        ("program", "programUpdated"),
        "programData",
        lambda d: d.get("program"),
        invalidates=_program_cache_keys,
    ),
)


@dataclass
class RouteResult:
    updates: dict[str, Any] = field(default_factory=dict)
    invalidations: list[CacheKey] = field(default_factory=list)


class ContextResponseRouter:
    def __init__(
        self,
        shared_state: SharedState,
        invalidate: Callable[[CacheKey], None] | None = None,
        routes: tuple[ContextRoute, ...] = ROUTES,
    ) -> None:
        self._shared_state = shared_state
        self._invalidate = invalidate
        self._routes = routes

    def route(self, context_data: dict[str, Any] | None, subject_id: str | None = None) -> RouteResult:
        """Apply recognized keys to shared state and signal cache keys."""
        result = RouteResult()
        if not isinstance(context_data, dict):
            return result

        for route in self._routes:
            if not any(key in context_data for key in route.keys):
                continue
            value = route.extract(context_data)
            if value is not None:
                result.updates[route.slot] = value
            if route.invalidates is not None:
                for key in route.invalidates(context_data, subject_id):
                    if key not in result.invalidations:
                        result.invalidations.append(key)

        if result.updates:
            self._shared_state.update(result.updates)
        if self._invalidate is not None:
            for key in result.invalidations:
                self._invalidate(key)
        if result.updates or result.invalidations:
            logger.debug(
                "Routed context data: slots=%s invalidations=%d",
                sorted(result.updates), len(result.invalidations),
            )
        return result
