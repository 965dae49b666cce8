"""
Anchor Edit Conflict Detection - Optimistic concurrency check before mutating.

The document is never locked. Instead a snapshot is taken when the request
starts and compared with a live snapshot right before the mutation:

- identical text: UNCHANGED
- the target span still holds the expected text: CHANGED_ELSEWHERE
- otherwise: CHANGED_IN_TARGET

Both changed classifications block the apply; they only differ in the
message shown to the user.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from .models import ConflictStatus, DocumentSnapshot, ResolvedLocation

logger = logging.getLogger(__name__)

CONFLICT_MESSAGES = {
    ConflictStatus.UNCHANGED: "",
    ConflictStatus.CHANGED_ELSEWHERE: (
        "The document was modified in a different area since the request started. "
        "Review the document and apply again."
    ),
    ConflictStatus.CHANGED_IN_TARGET: (
        "The exact area you're editing was modified since the request started. "
        "Re-issue the request for the current text."
    ),
}


def changed_region(before: str, after: str) -> Tuple[int, int, int]:
    """
    Bounding region of the difference between two texts.

    Returns ``(start, before_end, after_end)``: the texts share
    ``before[:start]`` and the suffixes ``before[before_end:]`` /
    ``after[after_end:]``. Several separate edits collapse into one region
    covering all of them.
    """
    limit = min(len(before), len(after))
    prefix = 0
    while prefix < limit and before[prefix] == after[prefix]:
        prefix += 1

    suffix = 0
    while (
        suffix < limit - prefix
        and before[len(before) - 1 - suffix] == after[len(after) - 1 - suffix]
    ):
        suffix += 1

    return prefix, len(before) - suffix, len(after) - suffix


class ConflictDetector:
    """Classify changes between the request-time and apply-time snapshots."""

    def detect(
        self,
        initial: DocumentSnapshot,
        live: DocumentSnapshot,
        target_span_text: str,
        location: Optional[ResolvedLocation] = None,
    ) -> ConflictStatus:
        """
        Args:
            initial: Snapshot captured when the apply started
            live: Snapshot captured right before mutating
            target_span_text: Text expected at the target span
            location: The resolved span (document-global bounds). Without it
                any change is classified as CHANGED_IN_TARGET.
        """
        if initial.text == live.text:
            return ConflictStatus.UNCHANGED

        if location is None or not target_span_text:
            return ConflictStatus.CHANGED_IN_TARGET

        start, end = location.anchor_start, location.anchor_end
        if live.text[start:end + 1] == target_span_text:
            status = ConflictStatus.CHANGED_ELSEWHERE
        elif self._edit_outside_span(initial.text, live.text, start, end, target_span_text):
            status = ConflictStatus.CHANGED_ELSEWHERE
        else:
            status = ConflictStatus.CHANGED_IN_TARGET

        logger.info(
            "Document changed between snapshots (%d -> %d chars): %s",
            len(initial.text),
            len(live.text),
            status.value,
        )
        return status

    @staticmethod
    def _edit_outside_span(before: str, after: str, start: int, end: int, expected: str) -> bool:
        """
        True when the changed region lies entirely before or after the span
        and the span text is intact at its shifted position.
        """
        if before[start:end + 1] != expected:
            return False

        region_start, before_end, after_end = changed_region(before, after)
        if before_end <= start:
            shift = after_end - before_end
            return after[start + shift:end + 1 + shift] == expected
        if region_start > end:
            return after[start:end + 1] == expected
        return False


def conflict_message(status: ConflictStatus) -> str:
    return CONFLICT_MESSAGES[status]
