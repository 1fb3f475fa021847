# SPDX-License-Identifier: Apache-2.0
"""
Panel/feature state machine.

The active feature is derived from the navigation path. Switching features
closes the outgoing panel immediately, then waits out the transition before
activating (and opening) the new one. Only the most recent navigation is ever
applied: a pending transition is cancelled whenever another one is scheduled.

Per-feature panel states:
    Idle    - never opened, no PanelState exists yet
    Open    - PanelState.is_open is True
    Closed  - PanelState exists, is_open is False (size is remembered)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable

from aac_workbench.features import (
    DEFAULT_FEATURE,
    FEATURE_TABLE,
    ChatMode,
    FeatureConfig,
    FeatureId,
    PanelPosition,
    PhysicalEdge,
    TextDirection,
    parse_feature,
    physical_edge,
    resolve_feature,
)
from aac_workbench.notify import Notifier
from aac_workbench.timer import Scheduler, SingleSlotTimer

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION_MS = 300

CHAT_SIZE_MIN = 20.0
CHAT_SIZE_MAX = 80.0
CHAT_SIZE_DEFAULT = 50.0


@dataclass
class PanelState:
    is_open: bool
    size: float
    position: PanelPosition


class PanelController(Notifier):
    """Owns the active feature, per-feature panel state and chat display mode.

    Args:
        transition_ms: Delay between leaving a feature and activating the next.
            Zero applies transitions synchronously.
        scheduler: Timer backend (asyncio loop by default).
        text_direction: Used to map logical panel positions to screen edges.
        navigator: Callable that performs a navigation write for
            ``set_active_feature``. The routing layer is expected to call
            ``navigate()`` back once the path changes; without a navigator the
            controller navigates itself.
    """

    def __init__(
        self,
        transition_ms: int = DEFAULT_TRANSITION_MS,
        scheduler: Scheduler | None = None,
        text_direction: TextDirection = TextDirection.ltr,
        navigator: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__()
        self.transition_ms = transition_ms
        self.text_direction = text_direction
        self._navigator = navigator or self.navigate
        self._timer = SingleSlotTimer(scheduler)

        self._active: FeatureId = DEFAULT_FEATURE
        self._target: FeatureId = DEFAULT_FEATURE
        self._panels: dict[FeatureId, PanelState] = {}
        self._is_transitioning = False
        self._path = "/"

        self._chat_mode = ChatMode.expanded
        self._chat_size = CHAT_SIZE_DEFAULT

    # -- Read-only state ----------------------------------------------------

    @property
    def active_feature(self) -> FeatureId:
        return self._active

    @property
    def is_transitioning(self) -> bool:
        return self._is_transitioning

    @property
    def current_path(self) -> str:
        return self._path

    @property
    def chat_mode(self) -> ChatMode:
        return self._chat_mode

    @property
    def chat_size(self) -> float:
        return self._chat_size

    @property
    def is_full_screen_feature(self) -> bool:
        return FEATURE_TABLE[self._active].is_full_screen

    def feature_config(self, feature: FeatureId) -> FeatureConfig:
        return FEATURE_TABLE[feature]

    def panel_state(self, feature: FeatureId) -> PanelState | None:
        """PanelState for a feature, or None while it is still Idle."""
        return self._panels.get(feature)

    def is_panel_open(self, feature: FeatureId) -> bool:
        state = self._panels.get(feature)
        return state is not None and state.is_open

    def get_physical_position(self, position: PanelPosition) -> PhysicalEdge:
        return physical_edge(position, self.text_direction)

    # -- Navigation ---------------------------------------------------------

    def navigate(self, path: str) -> FeatureId:
        """React to a navigation path change. Returns the implied feature."""
        self._path = path or "/"
        target = resolve_feature(self._path)
        if target == self._target:
            return target

        self._target = target
        self._is_transitioning = True
        outgoing = self._panels.get(self._active)
        if outgoing is not None:
            outgoing.is_open = False

        if self.transition_ms <= 0:
            self._timer.cancel()
            self._complete_transition()
        else:
            self._timer.schedule(self.transition_ms / 1000.0, self._complete_transition)
            self._notify("panels")
        return target

    def _complete_transition(self) -> None:
        target = self._target
        self._active = target
        if target != DEFAULT_FEATURE:
            self._open(target)
        if FEATURE_TABLE[target].is_full_screen and self._chat_mode == ChatMode.expanded:
            self._chat_mode = ChatMode.popup
        self._is_transitioning = False
        logger.debug("Active feature is now %s", target.value)
        self._notify("panels")

    def set_active_feature(self, feature: FeatureId | str) -> bool:
        """Navigate to a feature's route. Unknown ids are logged and ignored."""
        parsed = parse_feature(feature)
        if parsed is None:
            logger.warning("Ignoring navigation to unknown feature %r", feature)
            return False
        self._navigator(FEATURE_TABLE[parsed].path_prefix)
        return True

    # -- Direct panel mutation ----------------------------------------------

    def _open(self, feature: FeatureId) -> PanelState:
        state = self._panels.get(feature)
        if state is None:
            config = FEATURE_TABLE[feature]
            state = PanelState(is_open=True, size=config.default_size, position=config.position)
            self._panels[feature] = state
        else:
            state.is_open = True
        return state

    def open_panel(self, feature: FeatureId) -> PanelState:
        state = self._open(feature)
        self._notify("panels")
        return state

    def close_panel(self, feature: FeatureId) -> None:
        state = self._panels.get(feature)
        if state is not None and state.is_open:
            state.is_open = False
            self._notify("panels")

    def toggle_panel(self, feature: FeatureId) -> bool:
        """Flip a panel open/closed. Returns the new open state."""
        if self.is_panel_open(feature):
            self.close_panel(feature)
            return False
        self.open_panel(feature)
        return True

    def set_panel_size(self, feature: FeatureId, size: float) -> float:
        """Resize a panel within its configured bounds. Returns the applied size."""
        config = FEATURE_TABLE[feature]
        clamped = config.clamp_size(size)
        state = self._panels.get(feature)
        if state is None:
            # Remember the size for the first open without opening the panel
            self._panels[feature] = PanelState(
                is_open=False, size=clamped, position=config.position
            )
        else:
            state.size = clamped
        self._notify("panels")
        return clamped

    # -- Chat surface -------------------------------------------------------

    def set_chat_mode(self, mode: ChatMode) -> bool:
        if self.is_full_screen_feature and mode == ChatMode.expanded:
            return False
        self._chat_mode = mode
        self._notify("panels")
        return True

    def toggle_chat_mode(self) -> ChatMode:
        if self.is_full_screen_feature:
            self._chat_mode = (
                ChatMode.minimized if self._chat_mode == ChatMode.popup else ChatMode.popup
            )
        else:
            self._chat_mode = (
                ChatMode.popup if self._chat_mode == ChatMode.expanded else ChatMode.expanded
            )
        self._notify("panels")
        return self._chat_mode

    def set_chat_size(self, size: float) -> float:
        self._chat_size = min(max(size, CHAT_SIZE_MIN), CHAT_SIZE_MAX)
        self._notify("panels")
        return self._chat_size

    # -- Serialization ------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        panels: dict[str, Any] = {}
        for feature, state in self._panels.items():
            entry = asdict(state)
            entry["position"] = state.position.value
            entry["edge"] = self.get_physical_position(state.position).value
            panels[feature.value] = entry
        return {
            "active_feature": self._active.value,
            "target_feature": self._target.value,
            "is_transitioning": self._is_transitioning,
            "path": self._path,
            "text_direction": self.text_direction.value,
            "chat_mode": self._chat_mode.value,
            "chat_size": self._chat_size,
            "panels": panels,
        }
