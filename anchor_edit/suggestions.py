"""
Anchor Edit Suggestions - Inline change proposals embedded in generated text.

A generation response may carry any number of blocks of the form:

    <suggestion>Original text<changeto/>Revised text</suggestion>

Each block is parsed into a SuggestedChange and located in the document
text: exact match first, otherwise the best window whose similarity to the
original exceeds FUZZY_THRESHOLD.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .similarity import similarity
from .text_utils import get_context_window

logger = logging.getLogger(__name__)

SUGGESTION_PATTERN = re.compile(r"<suggestion>(.*?)<changeto/>(.*?)</suggestion>", re.DOTALL)

FUZZY_THRESHOLD = 0.7


@dataclass(frozen=True)
class SuggestedChange:
    original: str
    revised: str

    def to_dict(self) -> Dict[str, Any]:
        return {"original": self.original, "revised": self.revised}


@dataclass(frozen=True)
class LocatedSuggestion:
    """
    A suggestion found in the document text.

    ``start`` is a document-global offset; ``matched_text`` is the document
    text at the location, which differs from ``original`` for fuzzy matches.
    """

    original: str
    revised: str
    start: int
    matched_text: str
    context: str = ""
    fuzzy: bool = False
    similarity: float = 1.0

    @property
    def length(self) -> int:
        return len(self.matched_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original,
            "revised": self.revised,
            "start": self.start,
            "length": self.length,
            "matched_text": self.matched_text,
            "fuzzy": self.fuzzy,
            "similarity": round(self.similarity, 4),
        }


@dataclass
class SuggestionLocations:
    located: List[LocatedSuggestion] = field(default_factory=list)
    unlocated: List[SuggestedChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "located": [s.to_dict() for s in self.located],
            "unlocated": [s.to_dict() for s in self.unlocated],
        }


def parse_suggested_changes(response_text: Optional[str]) -> List[SuggestedChange]:
    """Extract every suggestion block, trimmed, in order of appearance."""
    if not response_text:
        return []
    suggestions = [
        SuggestedChange(original=original.strip(), revised=revised.strip())
        for original, revised in SUGGESTION_PATTERN.findall(response_text)
    ]
    logger.debug("Found %d suggestion(s) in response", len(suggestions))
    return suggestions


def _best_fuzzy_window(document_text: str, original: str) -> Optional[Tuple[int, float]]:
    """Start and score of the best window above FUZZY_THRESHOLD, if any."""
    size = len(original)
    stride = max(1, size // 4)
    last_start = max(0, len(document_text) - size)
    positions = list(range(0, last_start + 1, stride))
    if positions[-1] != last_start:
        positions.append(last_start)

    best: Optional[Tuple[int, float]] = None
    for start in positions:
        score = similarity(document_text[start:start + size], original)
        if score > FUZZY_THRESHOLD and (best is None or score > best[1]):
            best = (start, score)
    return best


def find_suggestion_locations(
    document_text: str,
    suggestions: List[SuggestedChange],
    context_window_chars: int = 50,
) -> SuggestionLocations:
    """
    Locate each suggestion's original text in ``document_text``.

    Suggestions with an empty original, or with no window scoring above
    FUZZY_THRESHOLD, are returned as unlocated.
    """
    result = SuggestionLocations()
    if not document_text or not suggestions:
        result.unlocated.extend(suggestions or [])
        return result

    for suggestion in suggestions:
        if not suggestion.original:
            result.unlocated.append(suggestion)
            continue

        start = document_text.find(suggestion.original)
        fuzzy, score = False, 1.0
        if start == -1:
            match = _best_fuzzy_window(document_text, suggestion.original)
            if match is None:
                result.unlocated.append(suggestion)
                continue
            start, score = match
            fuzzy = True

        matched = document_text[start:start + len(suggestion.original)]
        result.located.append(
            LocatedSuggestion(
                original=suggestion.original,
                revised=suggestion.revised,
                start=start,
                matched_text=matched,
                context=get_context_window(
                    document_text, start, start + len(matched) - 1, context_window_chars
                ),
                fuzzy=fuzzy,
                similarity=score,
            )
        )

    logger.info(
        "Located %d suggestion(s), failed to locate %d",
        len(result.located),
        len(result.unlocated),
    )
    return result
