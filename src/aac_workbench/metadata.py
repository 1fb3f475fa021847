# SPDX-License-Identifier: Apache-2.0
"""
Per-feature metadata builders for outgoing chat requests.

Features register a zero-argument builder while mounted. The chat layer only
ever asks for the active feature's metadata, so it never imports feature code.
A builder output containing ``modeContext`` is forwarded verbatim in the
request body.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from aac_workbench.features import FeatureId

logger = logging.getLogger(__name__)

MetadataBuilder = Callable[[], "dict[str, Any] | None"]


class MetadataRegistry:
    """Maps FeatureId -> builder. At most one builder per feature."""

    def __init__(self, active_feature: Callable[[], FeatureId]) -> None:
        self._active_feature = active_feature
        self._builders: dict[FeatureId, MetadataBuilder] = {}

    def register(self, feature: FeatureId, builder: MetadataBuilder) -> None:
        """Register a builder, replacing any previous one for the feature."""
        self._builders[feature] = builder

    def unregister(self, feature: FeatureId) -> None:
        self._builders.pop(feature, None)

    def builder_for(self, feature: FeatureId) -> MetadataBuilder | None:
        return self._builders.get(feature)

    def get_feature_metadata(self, feature: FeatureId) -> dict[str, Any] | None:
        builder = self._builders.get(feature)
        if builder is None:
            return None
        try:
            return builder()
        except Exception:
            logger.exception("Metadata builder for %s failed", feature.value)
            return None

    def get_metadata(self) -> dict[str, Any] | None:
        """Invoke the active feature's builder, or return None if it has none."""
        return self.get_feature_metadata(self._active_feature())
