"""
Anchor Edit Lifecycle - Logical state of an edit request.

States: unprocessed -> processing -> pending_review -> accepted | rejected,
plus invalid for records that are not well-formed edit requests.

The explicit ``state`` field of a record is authoritative. Stores that
cannot hold it fall back to text markers such as ``[STATE:ACCEPTED]``,
scanned in reply content from newest to oldest and finally in the record
content itself.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from config import AnchorSettings, config

from .models import AnchorRequest, AnnotationRecord, LifecycleState
from .surface import DocumentSurface
from .text_utils import normalize_search_text

logger = logging.getLogger(__name__)

MARKERS = {
    LifecycleState.PROCESSING: "[STATE:PROCESSING]",
    LifecycleState.PENDING_REVIEW: "[STATE:PENDING_REVIEW]",
    LifecycleState.ACCEPTED: "[STATE:ACCEPTED]",
    LifecycleState.REJECTED: "[STATE:REJECTED]",
}

ELIGIBLE_STATES = frozenset({LifecycleState.UNPROCESSED, LifecycleState.REJECTED})


def format_marker(state: LifecycleState) -> str:
    """Text marker for a state; states without a marker raise KeyError."""
    return MARKERS[state]


def find_marker(text: Optional[str]) -> Optional[LifecycleState]:
    """The marker appearing last in ``text``, if any."""
    if not text:
        return None
    found: Optional[LifecycleState] = None
    found_at = -1
    for state, marker in MARKERS.items():
        position = text.rfind(marker)
        if position > found_at:
            found, found_at = state, position
    return found


def extract_instruction(content: Optional[str], prefix: Optional[str] = None) -> Optional[str]:
    """Instruction text with the prefix removed, or None when the prefix is missing."""
    prefix = prefix or config.ANCHOR.instruction_prefix
    text = (content or "").strip()
    if not text.startswith(prefix):
        return None
    return text[len(prefix):].strip()


def derive_state(record: AnnotationRecord, prefix: Optional[str] = None) -> LifecycleState:
    if record.state is not None:
        return record.state

    for reply in reversed(record.replies):
        state = find_marker(reply.content)
        if state is not None:
            return state

    state = find_marker(record.content)
    if state is not None:
        return state

    if not (record.quoted_text or "").strip():
        return LifecycleState.INVALID
    if extract_instruction(record.content, prefix) is None:
        return LifecycleState.INVALID
    return LifecycleState.UNPROCESSED


def is_eligible_for_processing(record: AnnotationRecord, prefix: Optional[str] = None) -> bool:
    """
    True iff the derived state is unprocessed or rejected, the record is not
    resolved and it has quoted text. Processing is never eligible, so a request
    already in flight is not submitted twice.
    """
    if record.resolved:
        return False
    if not (record.quoted_text or "").strip():
        return False
    return derive_state(record, prefix) in ELIGIBLE_STATES


def list_eligible_anchors(
    surface: DocumentSurface,
    records: Iterable[AnnotationRecord],
    settings: Optional[AnchorSettings] = None,
) -> List[AnchorRequest]:
    """
    Edit requests that may be (re)processed, in store order.

    A rejected record whose content no longer starts with the instruction
    prefix is skipped until the user edits the instruction again.
    """
    settings = settings or config.ANCHOR
    prefix = settings.instruction_prefix
    eligible: List[AnchorRequest] = []

    for record in records:
        if not is_eligible_for_processing(record, prefix):
            continue
        instruction = extract_instruction(record.content, prefix)
        if instruction is None:
            logger.debug("Skipping record %s: no instruction prefix", record.id)
            continue

        needle = normalize_search_text(record.quoted_text)
        occurrences = len(surface.find_all_occurrences(needle)) if needle else 0

        eligible.append(
            AnchorRequest(
                id=record.id,
                instruction=instruction,
                quoted_text=record.quoted_text,
                quoted_context=record.quoted_context,
                anchor_hint=record.anchor_hint,
                state=derive_state(record, prefix),
                occurrences=occurrences,
            )
        )

    logger.info("Found %d eligible edit request(s)", len(eligible))
    return eligible
