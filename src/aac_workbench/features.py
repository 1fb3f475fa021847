# SPDX-License-Identifier: Apache-2.0
"""
Static feature table and route resolution.

Pure module, no I/O. Features are fixed configuration: each one owns a route
prefix and at most one side panel. Panel positions are logical
(start/end/top/bottom) and only become a screen edge once a text direction is
known.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ============================================================================
# Enums
# ============================================================================


class FeatureId(str, Enum):
    chat = "chat"
    interpret = "interpret"
    boards = "boards"
    docuslp = "docuslp"
    overview = "overview"
    students = "students"
    progress = "progress"
    settings = "settings"


class PanelPosition(str, Enum):
    start = "start"
    end = "end"
    top = "top"
    bottom = "bottom"


class PhysicalEdge(str, Enum):
    left = "left"
    right = "right"
    top = "top"
    bottom = "bottom"


class TextDirection(str, Enum):
    ltr = "ltr"
    rtl = "rtl"


class ChatMode(str, Enum):
    expanded = "expanded"
    popup = "popup"
    minimized = "minimized"


DEFAULT_FEATURE = FeatureId.chat


# ============================================================================
# Feature configuration
# ============================================================================


@dataclass(frozen=True, slots=True)
class FeatureConfig:
    id: FeatureId
    path_prefix: str
    position: PanelPosition
    default_size: float  # percent of the shell width
    min_size: float
    max_size: float
    has_bottom_bar: bool = False
    is_full_screen: bool = False  # forces the chat surface out of expanded mode

    def clamp_size(self, size: float) -> float:
        return min(max(size, self.min_size), self.max_size)


FEATURE_TABLE: dict[FeatureId, FeatureConfig] = {
    FeatureId.chat: FeatureConfig(
        FeatureId.chat, "/", PanelPosition.start, 0, 0, 0,
    ),
    FeatureId.interpret: FeatureConfig(
        FeatureId.interpret, "/interpret", PanelPosition.start, 50, 30, 70,
    ),
    FeatureId.boards: FeatureConfig(
        FeatureId.boards, "/boards", PanelPosition.start, 60, 40, 80,
        has_bottom_bar=True,
    ),
    FeatureId.docuslp: FeatureConfig(
        FeatureId.docuslp, "/docuslp", PanelPosition.start, 50, 30, 70,
    ),
    FeatureId.overview: FeatureConfig(
        FeatureId.overview, "/overview", PanelPosition.start, 60, 40, 80,
    ),
    FeatureId.students: FeatureConfig(
        FeatureId.students, "/students", PanelPosition.start, 100, 100, 100,
        is_full_screen=True,
    ),
    FeatureId.progress: FeatureConfig(
        FeatureId.progress, "/progress", PanelPosition.start, 100, 100, 100,
        is_full_screen=True,
    ),
    FeatureId.settings: FeatureConfig(
        FeatureId.settings, "/settings", PanelPosition.end, 60, 40, 80,
    ),
}


# ============================================================================
# Lookups
# ============================================================================


def parse_feature(value: FeatureId | str) -> FeatureId | None:
    """Coerce a feature identifier, returning None when it is unknown."""
    if isinstance(value, FeatureId):
        return value
    try:
        return FeatureId(value)
    except ValueError:
        return None


def get_feature_config(feature: FeatureId) -> FeatureConfig:
    return FEATURE_TABLE[feature]


def _prefix_matches(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    if not path.startswith(prefix):
        return False
    # Only match on a segment boundary: /boardsx is not /boards
    return len(path) == len(prefix) or path[len(prefix)] in "/?#"


def resolve_feature(path: str) -> FeatureId:
    """Feature implied by a navigation path.

    Longest matching route prefix wins. Paths that match nothing but the root
    prefix fall back to the chat feature.
    """
    best: FeatureConfig | None = None
    for config in FEATURE_TABLE.values():
        if not _prefix_matches(path or "/", config.path_prefix):
            continue
        if best is None or len(config.path_prefix) > len(best.path_prefix):
            best = config
    return best.id if best is not None else DEFAULT_FEATURE


def physical_edge(position: PanelPosition, direction: TextDirection) -> PhysicalEdge:
    """Map a direction-agnostic panel position onto a screen edge."""
    if position == PanelPosition.top:
        return PhysicalEdge.top
    if position == PanelPosition.bottom:
        return PhysicalEdge.bottom
    rtl = direction == TextDirection.rtl
    if position == PanelPosition.start:
        return PhysicalEdge.right if rtl else PhysicalEdge.left
    return PhysicalEdge.left if rtl else PhysicalEdge.right
