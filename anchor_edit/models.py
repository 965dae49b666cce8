"""
Anchor Edit Models - Data structures for anchored edit requests.

Store-facing records (pydantic, validated from store payloads):
- ReplyRecord: A reply on an annotation, optionally carrying an action
- AnnotationRecord: The out-of-band annotation that holds an edit request
- AnchorRequest: An annotation that is eligible for processing

Engine values (dataclasses, created per call and never cached):
- DocumentSnapshot: Full document text at one point in time
- Occurrence: One exact match of a needle inside a text container
- ResolvedLocation: The span an anchor resolved to
- Resolution: Outcome of anchor resolution (resolved, not found, ambiguous)
- ApplyResult: Terminal outcome of one apply call
- UpdateOutcome: Outcome of a retried annotation record write
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class LifecycleState(str, Enum):
    """Logical state of an edit request."""

    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PENDING_REVIEW = "pending_review"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    INVALID = "invalid"


class ReplyAction(str, Enum):
    """Actions a reply can apply to its annotation."""

    RESOLVE = "resolve"
    REOPEN = "reopen"


class Decision(str, Enum):
    """User decision on a generated replacement."""

    ACCEPT = "accept"
    REJECT = "reject"


class ConflictStatus(str, Enum):
    """Result of comparing the request-time and apply-time snapshots."""

    UNCHANGED = "unchanged"
    CHANGED_ELSEWHERE = "changed_elsewhere"
    CHANGED_IN_TARGET = "changed_in_target"

    @property
    def blocks_apply(self) -> bool:
        return self is not ConflictStatus.UNCHANGED


class ResolutionStatus(str, Enum):
    """Outcome of anchor resolution."""

    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


class ApplyOutcome(str, Enum):
    """Terminal outcome of an apply call."""

    APPLIED = "applied"  # AppliedOk
    BLOCKED = "blocked"  # No mutation performed
    FAILED = "failed"    # Precondition failure, or mutation performed and rollback attempted


class ApplyReason(str, Enum):
    """Why an apply call ended the way it did."""

    OK = "ok"
    INVALID_INPUT = "invalid_input"
    RECORD_NOT_FOUND = "record_not_found"
    ALREADY_RESOLVED = "already_resolved"
    MISSING_QUOTED_TEXT = "missing_quoted_text"
    ANCHOR_NOT_FOUND = "anchor_not_found"
    ANCHOR_AMBIGUOUS = "anchor_ambiguous"
    CONFLICT_ELSEWHERE = "conflict_elsewhere"
    CONFLICT_IN_TARGET = "conflict_in_target"
    EMPTY_REPLACEMENT = "empty_replacement"
    VERIFICATION_FAILED = "verification_failed"
    ROLLBACK_FAILED = "rollback_failed"
    MUTATION_ERROR = "mutation_error"
    STORE_READ_FAILED = "store_read_failed"
    STORE_UPDATE_FAILED = "store_update_failed"
    SURFACE_ERROR = "surface_error"


# =============================================================================
# STORE RECORDS
# =============================================================================


class EditBaseModel(BaseModel):
    """Base model enabling population by field name or by the store's camelCase alias."""
    model_config = {"populate_by_name": True}


class ReplyRecord(EditBaseModel):
    """A reply on an annotation record."""

    id: Optional[str] = Field(default=None, description="Store-assigned reply id")
    content: str = Field(default="", description="Reply text, may embed a state marker")
    action: Optional[ReplyAction] = Field(
        default=None,
        description="'resolve' marks the annotation resolved, 'reopen' clears it",
    )


class AnnotationRecord(EditBaseModel):
    """
    The externally stored edit request.

    ``quoted_text`` is the exact snippet the instruction targets; it is set at
    creation and never modified here. ``anchor_hint`` is an opaque locator
    that may be stale or absent. ``state`` is the explicit lifecycle field;
    stores that cannot hold it leave it empty and the state is derived from
    reply markers instead.
    """

    id: str = Field(..., description="Store-assigned identifier")
    content: str = Field(default="", description="Instruction text (prefix included)")
    quoted_text: str = Field(
        default="",
        description="Original snippet the instruction targets",
        validation_alias=AliasChoices("quoted_text", "quotedText"),
    )
    quoted_context: Optional[str] = Field(
        default=None,
        description="Wider text around the snippet captured by the requester",
        validation_alias=AliasChoices("quoted_context", "quotedContext"),
    )
    anchor_hint: Optional[Any] = Field(
        default=None,
        description="Opaque store locator, advisory only",
        validation_alias=AliasChoices("anchor_hint", "anchorHint", "anchor"),
    )
    resolved: bool = Field(default=False)
    replies: List[ReplyRecord] = Field(default_factory=list, description="Oldest first")
    state: Optional[LifecycleState] = Field(default=None, description="Explicit lifecycle state")

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "AnnotationRecord":
        """
        Build a record from a store payload.

        Accepts both flat payloads and the comment-API shape where the quoted
        snippet lives in ``quotedFileContent.value``. Unknown state values are
        dropped so the marker derivation applies.
        """
        data = dict(payload)
        quoted = data.pop("quotedFileContent", None)
        if isinstance(quoted, dict) and "quoted_text" not in data and "quotedText" not in data:
            data["quoted_text"] = quoted.get("value") or ""
        if data.get("state") not in {s.value for s in LifecycleState}:
            data.pop("state", None)
        data["replies"] = [
            reply for reply in (data.get("replies") or [])
            if isinstance(reply, dict) and not reply.get("deleted")
        ]
        return cls.model_validate(data)

    @property
    def latest_reply(self) -> Optional[ReplyRecord]:
        return self.replies[-1] if self.replies else None


class AnchorRequest(EditBaseModel):
    """An annotation eligible for (re)processing, as presented to callers."""

    id: str
    instruction: str = Field(description="Instruction with the prefix removed")
    quoted_text: str
    quoted_context: Optional[str] = None
    anchor_hint: Optional[Any] = None
    state: LifecycleState = LifecycleState.UNPROCESSED
    occurrences: int = Field(
        default=0,
        ge=0,
        description="How many times the quoted text currently occurs in the document",
    )


# =============================================================================
# ENGINE VALUES
# =============================================================================


@dataclass(frozen=True)
class DocumentSnapshot:
    """Full plain text of the document; two snapshots are equal iff their text is."""

    text: str

    @property
    def version(self) -> str:
        """Content hash identifying this snapshot."""
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()

    def __len__(self) -> int:
        return len(self.text)


@dataclass(frozen=True)
class Occurrence:
    """One match inside a text container (end offset inclusive)."""

    container_ref: Any
    start: int
    end: int


@dataclass
class ResolvedLocation:
    """
    Where an anchor resolved to.

    ``start_offset``/``end_offset`` are inclusive offsets inside
    ``container_ref``; ``anchor_start``/``anchor_end`` are the same span in
    document-global coordinates. Valid only until the next mutation.
    """

    container_ref: Any
    start_offset: int
    end_offset: int
    anchor_start: int
    anchor_end: int
    matched_text: str
    score: float = 1.0
    candidate_count: int = 1

    @property
    def length(self) -> int:
        return self.end_offset - self.start_offset + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "container": str(self.container_ref),
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "anchor_start": self.anchor_start,
            "anchor_end": self.anchor_end,
            "length": self.length,
            "score": round(self.score, 4),
            "candidate_count": self.candidate_count,
        }


@dataclass
class Resolution:
    """Outcome of resolving an anchor against a document."""

    status: ResolutionStatus
    location: Optional[ResolvedLocation] = None
    candidate_count: int = 0
    best_score: float = 0.0
    message: str = ""

    @property
    def resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED and self.location is not None


@dataclass
class ApplyResult:
    """
    Terminal outcome of one apply call.

    Attributes:
        outcome: APPLIED, BLOCKED (no mutation) or FAILED
        reason: Specific cause, ``OK`` when applied
        record_id: Id of the annotation record
        message: User-facing explanation
        decision: The decision that was applied
        warnings: Non-fatal problems (e.g. record bookkeeping failed after a verified edit)
        conflict: Conflict classification when blocked by a concurrent edit
        document_may_be_inconsistent: Set only when a rollback could not be verified
        context: Structured diagnostics (offsets, expected/actual lengths, attempts)
        execution_time_ms: Wall time of the call
    """

    outcome: ApplyOutcome
    reason: ApplyReason
    record_id: str
    message: str = ""
    decision: Optional[Decision] = None
    warnings: List[str] = field(default_factory=list)
    conflict: Optional[ConflictStatus] = None
    document_may_be_inconsistent: bool = False
    context: Dict[str, Any] = field(default_factory=dict)
    execution_time_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == ApplyOutcome.APPLIED

    @property
    def blocked(self) -> bool:
        return self.outcome == ApplyOutcome.BLOCKED

    @property
    def failed(self) -> bool:
        return self.outcome == ApplyOutcome.FAILED

    @property
    def degraded(self) -> bool:
        """Applied, but with bookkeeping warnings."""
        return self.ok and bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.outcome.value,
            "reason": self.reason.value,
            "record_id": self.record_id,
            "message": self.message,
            "decision": self.decision.value if self.decision else None,
            "warnings": list(self.warnings),
            "conflict": self.conflict.value if self.conflict else None,
            "document_may_be_inconsistent": self.document_may_be_inconsistent,
            "context": dict(self.context),
            "execution_time_ms": self.execution_time_ms,
        }


@dataclass
class UpdateOutcome:
    """Outcome of a retried annotation record write."""

    success: bool
    record_id: str
    attempts: int
    max_attempts: int
    last_error: Optional[Exception] = None
    delays: List[float] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    record: Optional[AnnotationRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "record_id": self.record_id,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": str(self.last_error) if self.last_error else None,
            "delays": [round(d, 3) for d in self.delays],
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }
