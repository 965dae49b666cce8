"""
Anchor Edit Similarity - Normalized edit-distance scoring.

``similarity(a, b)`` returns a score in [0, 1]:

- both inputs are normalized first (whitespace collapsed, trimmed, case-folded)
- equal normalized strings score 1.0, including two empty strings
- exactly one empty string scores 0.0
- otherwise ``1 - levenshtein(a, b) / max(len(a), len(b))``

The score is deterministic and symmetric.
"""

from __future__ import annotations

from typing import Optional

from rapidfuzz.distance import Levenshtein

from .text_utils import normalize_for_similarity


def levenshtein(a: str, b: str) -> int:
    """Levenshtein edit distance (insertions, deletions, substitutions cost 1)."""
    return Levenshtein.distance(a or "", b or "")


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalized similarity between two strings, in [0, 1]."""
    norm_a = normalize_for_similarity(a)
    norm_b = normalize_for_similarity(b)

    if norm_a == norm_b:
        return 1.0
    if not norm_a or not norm_b:
        return 0.0

    distance = levenshtein(norm_a, norm_b)
    return 1.0 - distance / max(len(norm_a), len(norm_b))
