"""
Anchor Edit Resolver - Re-find the span an instruction was anchored to.

Resolution works on the current document, never on cached offsets:

1. The quoted snippet is normalized (control characters removed, whitespace
   collapsed) and every exact occurrence is collected, in container order.
2. No occurrence: NOT_FOUND.
3. One occurrence: resolved directly.
4. Several occurrences: each candidate's context window is scored against
   the requester's stored context (or the snippet itself) and the best one
   is accepted only if its score reaches the confidence threshold;
   otherwise AMBIGUOUS. A repeated phrase is never edited on a guess.

The store's anchor hint only breaks ties between equally scored candidates.
Its offsets are never used to skip the search.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import json_utils as json
from config import AnchorSettings, config

from .errors import InvalidInputError
from .models import Resolution, ResolutionStatus, ResolvedLocation
from .similarity import similarity
from .surface import DocumentSurface
from .text_utils import get_context_window, normalize_search_text, preview

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Could not find the text in the document"
AMBIGUOUS_MESSAGE = "Could not reliably determine text location"

_HINT_OFFSET_KEYS = ("start", "startOffset", "start_offset", "offset")


@dataclass
class _Candidate:
    order: int
    container_ref: Any
    start: int
    end: int
    global_start: int
    text: str
    score: float = 0.0
    hint_distance: int = 0


def parse_anchor_hint(anchor_hint: Any) -> Optional[int]:
    """
    Extract a document-global start offset from an anchor hint.

    Accepts an int, a mapping with a start offset key, or a JSON string of
    either. Anything else (including opaque store anchors) yields None.
    """
    if anchor_hint is None or isinstance(anchor_hint, bool):
        return None
    if isinstance(anchor_hint, int):
        return anchor_hint if anchor_hint >= 0 else None
    if isinstance(anchor_hint, str):
        return parse_anchor_hint(json.try_loads(anchor_hint))
    if isinstance(anchor_hint, dict):
        for key in _HINT_OFFSET_KEYS:
            value = anchor_hint.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
                return value
    return None


class AnchorResolver:
    """
    Resolve a quoted snippet to a span of the current document.

    Example:
        resolver = AnchorResolver()
        resolution = resolver.resolve(document, "Hello world.", quoted_context=context)
        if resolution.resolved:
            location = resolution.location
    """

    def __init__(self, settings: Optional[AnchorSettings] = None):
        self.settings = settings or config.ANCHOR

    def resolve(
        self,
        surface: DocumentSurface,
        quoted_text: str,
        anchor_hint: Any = None,
        quoted_context: Optional[str] = None,
    ) -> Resolution:
        """
        Find the best span for ``quoted_text``.

        Args:
            surface: Document to search
            quoted_text: The snippet the instruction was anchored to
            anchor_hint: Optional store locator, used only to order ties
            quoted_context: Requester-side text around the snippet, used to
                disambiguate repeated snippets

        Returns:
            Resolution with status RESOLVED, NOT_FOUND or AMBIGUOUS

        Raises:
            InvalidInputError: If the snippet is empty after normalization
        """
        needle = normalize_search_text(quoted_text)
        if not needle:
            raise InvalidInputError(
                "Quoted text is empty",
                {"quoted_text_length": len(quoted_text or "")},
            )

        candidates = self._collect_candidates(surface, needle)
        logger.debug("Anchor search for '%s' found %d candidate(s)", preview(needle, 60), len(candidates))

        if not candidates:
            return Resolution(
                status=ResolutionStatus.NOT_FOUND,
                candidate_count=0,
                message=NOT_FOUND_MESSAGE,
            )

        if len(candidates) == 1:
            return Resolution(
                status=ResolutionStatus.RESOLVED,
                location=self._to_location(candidates[0], score=1.0, candidate_count=1),
                candidate_count=1,
                best_score=1.0,
            )

        return self._disambiguate(surface, candidates, quoted_text, anchor_hint, quoted_context)

    def _collect_candidates(self, surface: DocumentSurface, needle: str) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        offsets = {}
        for order, occurrence in enumerate(surface.find_all_occurrences(needle)):
            ref = occurrence.container_ref
            if ref not in offsets:
                offsets[ref] = surface.container_offset(ref)
            candidates.append(
                _Candidate(
                    order=order,
                    container_ref=ref,
                    start=occurrence.start,
                    end=occurrence.end,
                    global_start=offsets[ref] + occurrence.start,
                    text=surface.read_range(ref, occurrence.start, occurrence.end),
                )
            )
        return candidates

    def _disambiguate(
        self,
        surface: DocumentSurface,
        candidates: List[_Candidate],
        quoted_text: str,
        anchor_hint: Any,
        quoted_context: Optional[str],
    ) -> Resolution:
        reference = quoted_context or quoted_text
        window = self.settings.context_window_chars

        hint_start = parse_anchor_hint(anchor_hint) if self.settings.use_anchor_hint else None

        for candidate in candidates:
            container_text = surface.get_container_text(candidate.container_ref)
            context = get_context_window(container_text, candidate.start, candidate.end, window)
            candidate.score = similarity(context, reference)
            if hint_start is not None:
                candidate.hint_distance = abs(candidate.global_start - hint_start)

        ranked = sorted(candidates, key=lambda c: (-c.score, c.hint_distance, c.order))
        best = ranked[0]

        logger.debug(
            "Anchor disambiguation: %d candidates, best score %.3f (threshold %.2f)",
            len(candidates),
            best.score,
            self.settings.similarity_threshold,
        )

        if best.score >= self.settings.similarity_threshold:
            return Resolution(
                status=ResolutionStatus.RESOLVED,
                location=self._to_location(best, score=best.score, candidate_count=len(candidates)),
                candidate_count=len(candidates),
                best_score=best.score,
            )

        return Resolution(
            status=ResolutionStatus.AMBIGUOUS,
            candidate_count=len(candidates),
            best_score=best.score,
            message=AMBIGUOUS_MESSAGE,
        )

    @staticmethod
    def _to_location(candidate: _Candidate, score: float, candidate_count: int) -> ResolvedLocation:
        return ResolvedLocation(
            container_ref=candidate.container_ref,
            start_offset=candidate.start,
            end_offset=candidate.end,
            anchor_start=candidate.global_start,
            anchor_end=candidate.global_start + (candidate.end - candidate.start),
            matched_text=candidate.text,
            score=score,
            candidate_count=candidate_count,
        )
