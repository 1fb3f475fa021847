# SPDX-License-Identifier: Apache-2.0
"""
Historical pattern matcher: suggest past interpretations for new input.

Pure functions, no I/O. Each past (input -> interpretation) record for a
subject is scored against the new input by word overlap plus a small bonus
for words in the same position. Records are grouped by their normalized
input; a group's confidence blends its best score with how often the
subject has produced that exact pattern.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Protocol

MAX_SUGGESTIONS = 5
POSITION_BONUS = 0.1
SIMILARITY_WEIGHT = 0.6
FREQUENCY_WEIGHT = 0.4

_NON_WORD = re.compile(r"[^\w\s]")


# ============================================================================
# Data structures
# ============================================================================


class HistoricalRecord(Protocol):
    original_input: str
    interpreted_meaning: str


@dataclass(frozen=True, slots=True)
class Suggestion:
    interpretation: str
    confidence: float  # 0..1
    frequency: int
    pattern: str


@dataclass(frozen=True, slots=True)
class PatternAnalysis:
    suggestions: list[Suggestion]
    total_patterns: int


# ============================================================================
# Scoring
# ============================================================================


def normalize_text(text: str) -> list[str]:
    """Lowercase, turn punctuation into spaces, split into word tokens."""
    return [w for w in _NON_WORD.sub(" ", (text or "").lower()).split() if w]


def word_similarity(words1: list[str], words2: list[str]) -> float:
    """Jaccard overlap of the word sets plus 0.1 per same-position match, capped at 1."""
    if not words1 or not words2:
        return 0.0
    set1, set2 = set(words1), set(words2)
    jaccard = len(set1 & set2) / len(set1 | set2)
    order_bonus = sum(POSITION_BONUS for a, b in zip(words1, words2) if a == b)
    return min(jaccard + order_bonus, 1.0)


def calculate_confidence(match_score: float, frequency: int, total_records: int) -> float:
    if total_records <= 0:
        normalized_frequency = 0.0
    else:
        normalized_frequency = min(frequency / total_records, 1.0)
    confidence = match_score * SIMILARITY_WEIGHT + normalized_frequency * FREQUENCY_WEIGHT
    return max(0.0, min(confidence, 1.0))


# ============================================================================
# Public API
# ============================================================================


def analyze_historical_patterns(
    current_input: str,
    history: Iterable[HistoricalRecord],
) -> PatternAnalysis:
    """Rank past interpretations for ``current_input``.

    ``history`` is one subject's records, most recent first; the first record
    seen for a pattern supplies its interpretation. Callers filter out inputs
    too short to be meaningful.
    """
    records = list(history)
    if not records:
        return PatternAnalysis(suggestions=[], total_patterns=0)

    current_words = normalize_text(current_input)

    # pattern -> [interpretation, count, best score]; dict keeps first-seen order
    groups: dict[str, list] = {}
    for record in records:
        words = normalize_text(record.original_input)
        score = word_similarity(current_words, words)
        if score <= 0:
            continue
        pattern = " ".join(words)
        group = groups.get(pattern)
        if group is None:
            groups[pattern] = [record.interpreted_meaning, 1, score]
        else:
            group[1] += 1
            group[2] = max(group[2], score)

    suggestions = [
        Suggestion(
            interpretation=interpretation,
            confidence=calculate_confidence(score, count, len(records)),
            frequency=count,
            pattern=pattern,
        )
        for pattern, (interpretation, count, score) in groups.items()
    ]
    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return PatternAnalysis(
        suggestions=suggestions[:MAX_SUGGESTIONS],
        total_patterns=len(groups),
    )


def suggestions_to_dicts(suggestions: list[Suggestion]) -> list[dict]:
    """Serialize suggestions for JSON response."""
    return [
        {
            "interpretation": s.interpretation,
            "confidence": s.confidence,
            "frequency": s.frequency,
            "pattern": s.pattern,
        }
        for s in suggestions
    ]
