# SPDX-License-Identifier: Apache-2.0
"""In-memory interpretation history, one ordered list per subject.

Stands in for the persistent interpretation repository; the pattern matcher
only needs a subject's records, most recent first.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field

from aac_workbench.patterns import PatternAnalysis, analyze_historical_patterns


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InterpretationRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    subject_id: str
    original_input: str
    interpreted_meaning: str
    created_at: datetime = Field(default_factory=_utcnow)


class InterpretationHistory:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, list[InterpretationRecord]] = {}

    def add(
        self,
        subject_id: str,
        original_input: str,
        interpreted_meaning: str,
    ) -> InterpretationRecord:
        record = InterpretationRecord(
            subject_id=subject_id,
            original_input=original_input,
            interpreted_meaning=interpreted_meaning,
        )
        with self._lock:
            self._records.setdefault(subject_id, []).append(record)
        return record

    def history_for(self, subject_id: str) -> list[InterpretationRecord]:
        """All records for a subject, most recent first."""
        with self._lock:
            records = list(self._records.get(subject_id, []))
        records.reverse()
        return records

    def count(self, subject_id: str) -> int:
        with self._lock:
            return len(self._records.get(subject_id, []))

    def analyze(self, subject_id: str, current_input: str) -> PatternAnalysis:
        return analyze_historical_patterns(current_input, self.history_for(subject_id))
