"""
Anchor Edit Module - Re-find an anchored text span and replace it safely.

An edit request is an annotation that quotes a snippet of the document and
carries an instruction. When the generated replacement comes back, the
document may have changed. This module:

1. **Resolves** the snippet in the current document (exact search, then
   context similarity among repeated occurrences, never a guess)
2. **Detects conflicts** between the request-time and apply-time snapshots
3. **Replaces** the span with a delete-then-insert, verifies the written
   text and rolls back when verification fails
4. **Persists** the request state in the annotation store with bounded,
   verified, jittered retries

Usage:
    from anchor_edit import InMemoryDocument, InMemoryAnnotationStore, SafeApplyEngine, Decision

    document = InMemoryDocument.from_text("Hello world. Greeting.\\nHello world. Farewell.")
    store = InMemoryAnnotationStore()
    record = store.create("AI: make it warmer", quoted_text="Hello world.",
                          quoted_context="Hello world. Farewell.")

    engine = SafeApplyEngine(document, store)
    result = engine.apply(record.id, Decision.ACCEPT, "Hi there, world.")
    print(result.outcome, result.message)

Inline suggestions:
    from anchor_edit import parse_suggested_changes, find_suggestion_locations

    suggestions = parse_suggested_changes(response_text)
    locations = find_suggestion_locations(document.get_full_text(), suggestions)
    for located in locations.located:
        engine.apply_suggestion(located)
"""

from .models import (
    LifecycleState,
    ReplyAction,
    Decision,
    ConflictStatus,
    ResolutionStatus,
    ApplyOutcome,
    ApplyReason,
    ReplyRecord,
    AnnotationRecord,
    AnchorRequest,
    DocumentSnapshot,
    Occurrence,
    ResolvedLocation,
    Resolution,
    ApplyResult,
    UpdateOutcome,
)
from .errors import (
    AnchorEditError,
    InvalidInputError,
    RecordNotFoundError,
    StoreError,
    StoreVerificationError,
    VerificationError,
)
from .similarity import levenshtein, similarity
from .text_utils import (
    normalize_whitespace,
    normalize_search_text,
    sanitize_replacement,
    get_context_window,
)
from .surface import DocumentSurface, FlaggableSurface, InMemoryDocument
from .resolver import AnchorResolver, parse_anchor_hint
from .conflicts import ConflictDetector, conflict_message
from .store import AnnotationStore, InMemoryAnnotationStore, HttpAnnotationStore, create_store
from .lifecycle import (
    MARKERS,
    derive_state,
    is_eligible_for_processing,
    extract_instruction,
    list_eligible_anchors,
)
from .state_client import AnnotationStateClient
from .suggestions import (
    SuggestedChange,
    LocatedSuggestion,
    SuggestionLocations,
    parse_suggested_changes,
    find_suggestion_locations,
)
from .engine import SafeApplyEngine, validate_record_id, build_accepted_content

__all__ = [
    # Models
    "LifecycleState",
    "ReplyAction",
    "Decision",
    "ConflictStatus",
    "ResolutionStatus",
    "ApplyOutcome",
    "ApplyReason",
    "ReplyRecord",
    "AnnotationRecord",
    "AnchorRequest",
    "DocumentSnapshot",
    "Occurrence",
    "ResolvedLocation",
    "Resolution",
    "ApplyResult",
    "UpdateOutcome",
    # Errors
    "AnchorEditError",
    "InvalidInputError",
    "RecordNotFoundError",
    "StoreError",
    "StoreVerificationError",
    "VerificationError",
    # Text
    "levenshtein",
    "similarity",
    "normalize_whitespace",
    "normalize_search_text",
    "sanitize_replacement",
    "get_context_window",
    # Collaborators
    "DocumentSurface",
    "FlaggableSurface",
    "InMemoryDocument",
    "AnnotationStore",
    "InMemoryAnnotationStore",
    "HttpAnnotationStore",
    "create_store",
    # Core
    "AnchorResolver",
    "parse_anchor_hint",
    "ConflictDetector",
    "conflict_message",
    "MARKERS",
    "derive_state",
    "is_eligible_for_processing",
    "extract_instruction",
    "list_eligible_anchors",
    "AnnotationStateClient",
    "SafeApplyEngine",
    "validate_record_id",
    "build_accepted_content",
    # Suggestions
    "SuggestedChange",
    "LocatedSuggestion",
    "SuggestionLocations",
    "parse_suggested_changes",
    "find_suggestion_locations",
]
