"""
Anchor Edit Engine - Safe application of a decided edit request.

One apply call runs through

    Start -> AnchorResolved -> ConflictChecked -> Mutated -> Verified -> StoreUpdated

and ends in exactly one terminal outcome:

- APPLIED: the span was replaced and verified (store bookkeeping may have
  degraded to a warning)
- BLOCKED: nothing was mutated (anchor not found or ambiguous, conflict)
- FAILED: a precondition failed, or a mutation was performed and rolled back

Every failure edge after a mutation goes through the single rollback
routine. A rollback that cannot be verified is the one unrecoverable state
and is reported with ``document_may_be_inconsistent``.

Usage:
    engine = SafeApplyEngine(document, store)
    result = engine.apply("ann-42", Decision.ACCEPT, "Dear Ms. Smith,")
    if not result.ok:
        print(result.message)
"""

from __future__ import annotations

import functools
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from config import AnchorSettings, RetrySettings, config
from logging_utils import Phase, PhaseLogger

from .conflicts import ConflictDetector, conflict_message
from .errors import InvalidInputError, RecordNotFoundError, VerificationError
from .lifecycle import format_marker
from .models import (
    AnnotationRecord,
    ApplyOutcome,
    ApplyReason,
    ApplyResult,
    ConflictStatus,
    Decision,
    DocumentSnapshot,
    LifecycleState,
    ResolutionStatus,
    ResolvedLocation,
)
from .resolver import AnchorResolver
from .state_client import AnnotationStateClient
from .store import AnnotationStore
from .suggestions import LocatedSuggestion
from .surface import DocumentSurface, FlaggableSurface
from .text_utils import normalize_search_text, preview, sanitize_replacement

logger = logging.getLogger(__name__)

_RECORD_ID_RE = re.compile(r"^[^\s/\\]+$")

REJECTED_CONTENT = (
    f"{format_marker(LifecycleState.REJECTED)}\n\n"
    "Changes rejected.\n\n"
    "You can edit the comment and try again."
)

INCONSISTENT_MESSAGE = (
    "The change could not be verified and the original text could not be restored. "
    "Document may be inconsistent; review it manually."
)

CONFLICT_REASONS = {
    ConflictStatus.CHANGED_ELSEWHERE: ApplyReason.CONFLICT_ELSEWHERE,
    ConflictStatus.CHANGED_IN_TARGET: ApplyReason.CONFLICT_IN_TARGET,
}


def validate_record_id(record_id: Any) -> str:
    """Return the id unchanged, or raise InvalidInputError."""
    if not isinstance(record_id, str) or not _RECORD_ID_RE.match(record_id):
        raise InvalidInputError(
            "Malformed record id",
            {"record_id": record_id if isinstance(record_id, str) else repr(record_id)},
        )
    return record_id


def build_accepted_content(original_text: str, new_text: str) -> str:
    """Record content summarizing an accepted change."""
    return (
        f"{format_marker(LifecycleState.ACCEPTED)}\n\n"
        "Changes applied successfully:\n\n"
        f"Original text:\n{original_text}\n\n"
        f"New text:\n{new_text}"
    )


@dataclass
class _ReplaceOutcome:
    """Result of the delete-insert-verify step."""

    ok: bool
    reason: ApplyReason = ApplyReason.OK
    message: str = ""
    removed_text: str = ""
    container_before: str = ""
    blocked: bool = False
    inconsistent: bool = False
    context: Dict[str, Any] = field(default_factory=dict)


class SafeApplyEngine:
    """
    Resolve, check, replace and verify one anchored span at a time.

    The engine holds no document or record state between calls; every
    call fetches the record and re-resolves the anchor. Apply calls on one
    engine are serialized by ``lock``, so at most one runs against the
    document at a time.
    """

    def __init__(
        self,
        surface: DocumentSurface,
        store: AnnotationStore,
        state_client: Optional[AnnotationStateClient] = None,
        resolver: Optional[AnchorResolver] = None,
        detector: Optional[ConflictDetector] = None,
        anchor_settings: Optional[AnchorSettings] = None,
        retry_settings: Optional[RetrySettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        verbose: bool = False,
    ):
        self.surface = surface
        self.store = store
        self.anchor_settings = anchor_settings or config.ANCHOR
        self.state_client = state_client or AnnotationStateClient(
            store, retry_settings or config.RETRY, sleep=sleep
        )
        self.resolver = resolver or AnchorResolver(self.anchor_settings)
        self.detector = detector or ConflictDetector()
        self.sleep = sleep
        self.verbose = verbose
        self.lock = threading.Lock()

    def snapshot(self) -> DocumentSnapshot:
        """Capture the full document text."""
        return DocumentSnapshot(self.surface.get_full_text())

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def apply(
        self,
        record_id: str,
        decision: Union[Decision, str],
        replacement_text: Optional[str] = None,
        initial_snapshot: Optional[DocumentSnapshot] = None,
    ) -> ApplyResult:
        """
        Apply the user's decision on an edit request.

        Args:
            record_id: Annotation record id
            decision: ACCEPT or REJECT
            replacement_text: Generated text; required to accept
            initial_snapshot: Document snapshot taken when the request was
                issued. When omitted the snapshot is captured at call time.

        Returns:
            ApplyResult; expected failures are never raised
        """
        with self.lock:
            return self._apply(record_id, decision, replacement_text, initial_snapshot)

    def apply_suggestion(
        self,
        suggestion: LocatedSuggestion,
        initial_snapshot: Optional[DocumentSnapshot] = None,
    ) -> ApplyResult:
        """
        Apply one located inline suggestion.

        The suggestion's offset only orders candidates; the matched text is
        re-resolved against the live document before anything is replaced.
        No annotation record is involved.
        """
        with self.lock:
            return self._apply_suggestion(suggestion, initial_snapshot)

    # =========================================================================
    # DECISIONS
    # =========================================================================

    def _apply(
        self,
        record_id: str,
        decision: Union[Decision, str],
        replacement_text: Optional[str],
        initial_snapshot: Optional[DocumentSnapshot],
    ) -> ApplyResult:
        started = time.time()
        phase_logger = PhaseLogger(session_id=str(record_id), verbose=self.verbose, logger=logger)

        def finish(outcome: ApplyOutcome, reason: ApplyReason, message: str = "", **kwargs) -> ApplyResult:
            result = ApplyResult(
                outcome=outcome,
                reason=reason,
                record_id=str(record_id),
                message=message,
                execution_time_ms=int((time.time() - started) * 1000),
                **kwargs,
            )
            phase_logger.log_outcome(outcome.value, reason.value, result.context)
            phase_logger.log_timing_summary()
            return result

        try:
            validate_record_id(record_id)
            decision = Decision(decision)
        except (InvalidInputError, ValueError) as exc:
            return finish(ApplyOutcome.FAILED, ApplyReason.INVALID_INPUT, str(exc))

        finish = functools.partial(finish, decision=decision)

        try:
            record = self.store.get(record_id)
        except RecordNotFoundError as exc:
            return finish(ApplyOutcome.FAILED, ApplyReason.RECORD_NOT_FOUND, str(exc))
        except Exception as exc:
            phase_logger.error(f"Could not read record: {exc}")
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.STORE_READ_FAILED,
                "The annotation could not be read. Try again later.",
                context={"error": str(exc)},
            )

        if record.resolved:
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.ALREADY_RESOLVED,
                "This request has already been resolved",
            )
        if not normalize_search_text(record.quoted_text):
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.MISSING_QUOTED_TEXT,
                "The annotation does not quote any text",
            )

        if decision == Decision.REJECT:
            return self._reject(record, phase_logger, finish)

        if replacement_text is None:
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.INVALID_INPUT,
                "A replacement text is required to accept a change",
            )
        return self._accept(record, replacement_text, initial_snapshot, phase_logger, finish)

    def _apply_suggestion(
        self,
        suggestion: LocatedSuggestion,
        initial_snapshot: Optional[DocumentSnapshot],
    ) -> ApplyResult:
        started = time.time()
        suggestion_id = f"suggestion@{suggestion.start}"
        phase_logger = PhaseLogger(session_id=suggestion_id, verbose=self.verbose, logger=logger)

        def finish(outcome: ApplyOutcome, reason: ApplyReason, message: str = "", **kwargs) -> ApplyResult:
            result = ApplyResult(
                outcome=outcome,
                reason=reason,
                record_id=suggestion_id,
                message=message,
                decision=Decision.ACCEPT,
                execution_time_ms=int((time.time() - started) * 1000),
                **kwargs,
            )
            phase_logger.log_outcome(outcome.value, reason.value, result.context)
            return result

        initial = initial_snapshot or self.snapshot()
        location, blocked = self._locate(
            suggestion.matched_text,
            anchor_hint=suggestion.start,
            quoted_context=suggestion.context or None,
            initial=initial,
            phase_logger=phase_logger,
            finish=finish,
        )
        if blocked is not None:
            return blocked

        sanitized = sanitize_replacement(suggestion.revised)
        if not sanitized:
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.EMPTY_REPLACEMENT,
                "The suggested text is empty",
                context={"location": location.to_dict()},
            )

        replaced = self._replace_span(location, sanitized, phase_logger)
        if replaced.blocked:
            return finish(
                ApplyOutcome.BLOCKED,
                replaced.reason,
                replaced.message,
                conflict=ConflictStatus.CHANGED_IN_TARGET,
                context=replaced.context,
            )
        if not replaced.ok:
            return finish(
                ApplyOutcome.FAILED,
                replaced.reason,
                replaced.message,
                document_may_be_inconsistent=replaced.inconsistent,
                context=replaced.context,
            )
        return finish(
            ApplyOutcome.APPLIED,
            ApplyReason.OK,
            "Suggestion applied",
            context=replaced.context,
        )

    def _reject(self, record: AnnotationRecord, phase_logger: PhaseLogger, finish) -> ApplyResult:
        with phase_logger.phase(Phase.STORE_UPDATE, sub_label="reject"):
            outcome = self.state_client.update_record(
                record.id,
                REJECTED_CONTENT,
                desired_resolved=False,
                state=LifecycleState.REJECTED,
            )
            if outcome.success:
                outcome = self.state_client.post_state_reply(
                    record.id, LifecycleState.REJECTED, "Changes rejected"
                )

        if not outcome.success:
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.STORE_UPDATE_FAILED,
                "The rejection could not be recorded. Try again later.",
                context={"store": outcome.to_dict()},
            )
        return finish(
            ApplyOutcome.APPLIED,
            ApplyReason.OK,
            "Changes rejected. You can edit the comment and try again.",
            context={"store": outcome.to_dict()},
        )

    def _accept(
        self,
        record: AnnotationRecord,
        replacement_text: str,
        initial_snapshot: Optional[DocumentSnapshot],
        phase_logger: PhaseLogger,
        finish,
    ) -> ApplyResult:
        initial = initial_snapshot or self.snapshot()
        location, blocked = self._locate(
            record.quoted_text,
            anchor_hint=record.anchor_hint,
            quoted_context=record.quoted_context,
            initial=initial,
            phase_logger=phase_logger,
            finish=finish,
        )
        if blocked is not None:
            return blocked

        with phase_logger.phase(Phase.SANITIZE):
            sanitized = sanitize_replacement(replacement_text)
        if not sanitized:
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.EMPTY_REPLACEMENT,
                "The generated text is empty after cleanup",
                context={"location": location.to_dict(), "raw_length": len(replacement_text)},
            )

        replaced = self._replace_span(location, sanitized, phase_logger)
        if replaced.blocked:
            return finish(
                ApplyOutcome.BLOCKED,
                replaced.reason,
                replaced.message,
                conflict=ConflictStatus.CHANGED_IN_TARGET,
                context=replaced.context,
            )
        if not replaced.ok:
            return finish(
                ApplyOutcome.FAILED,
                replaced.reason,
                replaced.message,
                document_may_be_inconsistent=replaced.inconsistent,
                context=replaced.context,
            )

        context = dict(replaced.context)
        try:
            content = build_accepted_content(replaced.removed_text, sanitized)
            with phase_logger.phase(Phase.STORE_UPDATE, sub_label="accept"):
                outcome = self.state_client.update_record(
                    record.id,
                    content,
                    desired_resolved=True,
                    state=LifecycleState.ACCEPTED,
                )
        except Exception as exc:
            phase_logger.error(f"Unexpected error before the record was updated: {exc}")
            restored = self._rollback(
                location.container_ref,
                location.start_offset,
                replaced.container_before,
                replaced.removed_text,
                phase_logger,
            )
            context["error"] = str(exc)
            if not restored:
                return finish(
                    ApplyOutcome.FAILED,
                    ApplyReason.ROLLBACK_FAILED,
                    INCONSISTENT_MESSAGE,
                    document_may_be_inconsistent=True,
                    context=context,
                )
            return finish(
                ApplyOutcome.FAILED,
                ApplyReason.MUTATION_ERROR,
                "The change was undone because of an unexpected error",
                context=context,
            )

        context["store"] = outcome.to_dict()
        warnings = []
        if not outcome.success:
            warning = (
                "Text was replaced, but the annotation could not be updated "
                f"after {outcome.attempts} attempt(s): {outcome.last_error}"
            )
            warnings.append(warning)
            logger.error(
                "Record %s not updated after verified apply; needs reconciliation: %s",
                record.id,
                outcome.last_error,
            )

        return finish(
            ApplyOutcome.APPLIED,
            ApplyReason.OK,
            "Changes applied successfully",
            warnings=warnings,
            context=context,
        )

    # =========================================================================
    # STEPS
    # =========================================================================

    def _locate(
        self,
        quoted_text: str,
        anchor_hint: Any,
        quoted_context: Optional[str],
        initial: DocumentSnapshot,
        phase_logger: PhaseLogger,
        finish,
    ):
        """
        Resolve the anchor and check for concurrent edits.

        Returns ``(location, None)`` when the apply may proceed, otherwise
        ``(None, blocked_result)``.
        """
        try:
            with phase_logger.phase(Phase.RESOLVE):
                resolution = self.resolver.resolve(
                    self.surface,
                    quoted_text,
                    anchor_hint=anchor_hint,
                    quoted_context=quoted_context,
                )
        except InvalidInputError as exc:
            return None, finish(ApplyOutcome.FAILED, ApplyReason.INVALID_INPUT, str(exc), context=exc.details)
        except Exception as exc:
            phase_logger.error(f"Document read failed during resolution: {exc}")
            return None, finish(
                ApplyOutcome.FAILED,
                ApplyReason.SURFACE_ERROR,
                "The document could not be read",
                context={"error": str(exc)},
            )

        if not resolution.resolved:
            reason = (
                ApplyReason.ANCHOR_AMBIGUOUS
                if resolution.status == ResolutionStatus.AMBIGUOUS
                else ApplyReason.ANCHOR_NOT_FOUND
            )
            return None, finish(
                ApplyOutcome.BLOCKED,
                reason,
                resolution.message,
                context={
                    "candidate_count": resolution.candidate_count,
                    "best_score": round(resolution.best_score, 4),
                    "quoted_length": len(quoted_text),
                },
            )

        location = resolution.location
        with phase_logger.phase(Phase.CONFLICT_CHECK):
            live = self.snapshot()
            status = self.detector.detect(initial, live, location.matched_text, location)

        if status.blocks_apply:
            self._flag_conflict(location, phase_logger)
            return None, finish(
                ApplyOutcome.BLOCKED,
                CONFLICT_REASONS[status],
                conflict_message(status),
                conflict=status,
                context={
                    "location": location.to_dict(),
                    "initial_length": len(initial),
                    "live_length": len(live),
                },
            )

        phase_logger.info(
            f"Anchor resolved at {location.anchor_start}-{location.anchor_end} "
            f"(score {location.score:.3f}, {location.candidate_count} candidate(s))"
        )
        return location, None

    def _replace_span(
        self,
        location: ResolvedLocation,
        sanitized: str,
        phase_logger: PhaseLogger,
    ) -> _ReplaceOutcome:
        """Delete then insert at the resolved offsets, verify, roll back on failure."""
        ref = location.container_ref
        start, end = location.start_offset, location.end_offset
        context: Dict[str, Any] = {
            "location": location.to_dict(),
            "expected_length": len(sanitized),
        }

        try:
            container_before = self.surface.get_container_text(ref)
            removed = self.surface.read_range(ref, start, end)
        except Exception as exc:
            context["error"] = str(exc)
            return _ReplaceOutcome(
                ok=False,
                reason=ApplyReason.SURFACE_ERROR,
                message="The document could not be read",
                context=context,
            )

        if removed != location.matched_text:
            # The document changed after the conflict check; the offsets no longer hold the span.
            phase_logger.warning("Target text moved before the write; nothing was changed")
            context["actual_preview"] = preview(removed, 80)
            return _ReplaceOutcome(
                ok=False,
                reason=CONFLICT_REASONS[ConflictStatus.CHANGED_IN_TARGET],
                message=conflict_message(ConflictStatus.CHANGED_IN_TARGET),
                blocked=True,
                context=context,
            )

        expected_container = container_before[:start] + sanitized + container_before[end + 1:]
        try:
            with phase_logger.phase(Phase.MUTATE):
                self.surface.delete_range(ref, start, end)
                self.surface.insert_at(ref, start, sanitized)

            with phase_logger.phase(Phase.VERIFY):
                written = self.surface.read_range(ref, start, start + len(sanitized) - 1)
                container_after = self.surface.get_container_text(ref)
            context["actual_length"] = len(written)
            if written != sanitized or container_after != expected_container:
                raise VerificationError(
                    "Text read back differs from the replacement",
                    {
                        "expected_length": len(sanitized),
                        "actual_length": len(written),
                        "actual_preview": preview(written, 80),
                    },
                )
        except VerificationError as exc:
            phase_logger.error(f"{exc} ({exc.details})")
            reason, message = ApplyReason.VERIFICATION_FAILED, "The change could not be verified and was undone"
            context.update(exc.details)
        except Exception as exc:
            phase_logger.error(f"Mutation failed: {exc}")
            reason, message = ApplyReason.MUTATION_ERROR, "The change could not be written and was undone"
            context["error"] = str(exc)
        else:
            return _ReplaceOutcome(
                ok=True,
                removed_text=removed,
                container_before=container_before,
                context=context,
            )

        restored = self._rollback(ref, start, container_before, removed, phase_logger)
        context["rollback_verified"] = restored
        if not restored:
            return _ReplaceOutcome(
                ok=False,
                reason=ApplyReason.ROLLBACK_FAILED,
                message=INCONSISTENT_MESSAGE,
                removed_text=removed,
                container_before=container_before,
                inconsistent=True,
                context=context,
            )
        return _ReplaceOutcome(
            ok=False,
            reason=reason,
            message=message,
            removed_text=removed,
            container_before=container_before,
            context=context,
        )

    def _rollback(
        self,
        container_ref: Any,
        start: int,
        container_before: str,
        removed_text: str,
        phase_logger: PhaseLogger,
    ) -> bool:
        """
        Restore the removed text at ``start`` and verify the container.

        The inserted length is derived from the container's current length,
        so partially applied mutations are undone as well. Returns True when
        the container equals its pre-mutation text.
        """
        with phase_logger.phase(Phase.ROLLBACK):
            try:
                current = self.surface.get_container_text(container_ref)
                if current != container_before:
                    inserted_length = len(current) - len(container_before) + len(removed_text)
                    if inserted_length > 0:
                        self.surface.delete_range(container_ref, start, start + inserted_length - 1)
                    if removed_text:
                        self.surface.insert_at(container_ref, start, removed_text)
                restored = self.surface.get_container_text(container_ref) == container_before
            except Exception as exc:
                phase_logger.error(f"Rollback failed: {exc}")
                return False

            if restored:
                phase_logger.info("Original text restored")
            else:
                phase_logger.error("Rollback verification failed; document may be inconsistent")
            return restored

    def _flag_conflict(self, location: ResolvedLocation, phase_logger: PhaseLogger) -> None:
        """Briefly flag a blocked span on surfaces that support it."""
        seconds = self.anchor_settings.conflict_flag_seconds
        if seconds <= 0 or not isinstance(self.surface, FlaggableSurface):
            return
        ref, start, end = location.container_ref, location.start_offset, location.end_offset
        try:
            previous = self.surface.flag_range(ref, start, end, self.anchor_settings.conflict_flag_color)
            try:
                self.sleep(seconds)
            finally:
                self.surface.clear_flag(ref, start, end, previous)
        except Exception as exc:
            phase_logger.warning(f"Could not flag conflicting span: {exc}")
