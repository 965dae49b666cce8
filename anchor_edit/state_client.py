"""
Anchor Edit State Client - Retrying, verifying writes of annotation records.

Every write is read-modify-verify:

1. Fetch the current record (a missing record fails fast, it is not retried)
2. Submit the update
3. Compare the store's echoed fields with what was requested

A mismatch counts as a failed attempt even when the call itself succeeded.
Failed attempts are retried with exponential backoff and full jitter:

    delay(i) = min(initial * 2**i, max_delay) + uniform(0, jitter)

Exhausting the attempts returns a failed UpdateOutcome; the record may or
may not have changed server-side.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

from config import RetrySettings, config

from .errors import InvalidInputError, RecordNotFoundError, StoreVerificationError
from .lifecycle import format_marker
from .models import AnnotationRecord, LifecycleState, ReplyAction, UpdateOutcome
from .store import AnnotationStore
from .text_utils import preview

logger = logging.getLogger(__name__)

# Errors that no amount of retrying can fix.
NON_RETRIABLE_ERRORS = (RecordNotFoundError, InvalidInputError)


class AnnotationStateClient:
    """
    Persist request state in the annotation store.

    Example:
        client = AnnotationStateClient(store, RetrySettings(max_attempts=3))
        outcome = client.update_record("ann-1", "[STATE:REJECTED] ...", desired_resolved=False)
        if not outcome.success:
            logger.error("Record not updated: %s", outcome.last_error)
    """

    def __init__(
        self,
        store: AnnotationStore,
        settings: Optional[RetrySettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        write_state_field: bool = True,
    ):
        self.store = store
        self.settings = settings or config.RETRY
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.write_state_field = write_state_field

    def backoff_delay(self, retry_index: int) -> float:
        """Delay in seconds before retry ``retry_index`` (0-indexed)."""
        base = min(
            self.settings.initial_delay_seconds * (2 ** retry_index),
            self.settings.max_delay_seconds,
        )
        jitter = self.rng.uniform(0, self.settings.jitter_seconds) if self.settings.jitter_seconds else 0.0
        return base + jitter

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    def update_record(
        self,
        record_id: str,
        content: str,
        desired_resolved: bool,
        state: Optional[LifecycleState] = None,
    ) -> UpdateOutcome:
        """
        Write ``content`` (and ``state``) and bring ``resolved`` to the desired value.

        Acceptance is recorded with a resolve reply carrying the accepted
        marker, never by writing ``resolved`` directly.
        """

        def attempt() -> AnnotationRecord:
            self.store.get(record_id)

            changes = {"content": content}
            if state is not None and self.write_state_field:
                changes["state"] = state
            echoed = self.store.update(record_id, changes)
            self._verify_echo(echoed, content, state)

            if desired_resolved and not echoed.resolved:
                self.store.create_reply(
                    record_id,
                    content=f"{format_marker(LifecycleState.ACCEPTED)} Changes accepted",
                    action=ReplyAction.RESOLVE,
                )
                echoed = self.store.get(record_id)
                self._verify_echo(echoed, content, state)

            if echoed.resolved != desired_resolved:
                raise StoreVerificationError(
                    f"Record {record_id} resolved={echoed.resolved}, expected {desired_resolved}",
                    {"record_id": record_id, "resolved": echoed.resolved},
                )
            return echoed

        return self._run_with_retries(record_id, "update", attempt)

    def post_state_reply(
        self,
        record_id: str,
        state: LifecycleState,
        message: str = "",
        resolve: bool = False,
    ) -> UpdateOutcome:
        """
        Announce ``state`` with a marker reply.

        Skips the reply when the newest reply already carries the marker,
        so repeated announcements do not pile up.
        """
        marker = format_marker(state)

        def attempt() -> AnnotationRecord:
            record = self.store.get(record_id)
            latest = record.latest_reply
            already_posted = latest is not None and marker in latest.content
            if already_posted and (record.resolved or not resolve):
                logger.debug("Record %s already announces %s", record_id, state.value)
            else:
                self.store.create_reply(
                    record_id,
                    content=f"{marker} {message}".strip(),
                    action=ReplyAction.RESOLVE if resolve else None,
                )

            if self.write_state_field and record.state != state:
                self.store.update(record_id, {"state": state})

            echoed = self.store.get(record_id)
            latest = echoed.latest_reply
            if latest is None or marker not in latest.content:
                raise StoreVerificationError(
                    f"State reply for {record_id} not found after posting",
                    {"record_id": record_id, "state": state.value},
                )
            if self.write_state_field and echoed.state != state:
                raise StoreVerificationError(
                    f"Record {record_id} state={echoed.state}, expected {state.value}",
                    {"record_id": record_id, "state": state.value},
                )
            if resolve and not echoed.resolved:
                raise StoreVerificationError(
                    f"Record {record_id} not resolved after resolve reply",
                    {"record_id": record_id},
                )
            return echoed

        return self._run_with_retries(record_id, f"state reply ({state.value})", attempt)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _verify_echo(
        self,
        echoed: AnnotationRecord,
        content: str,
        state: Optional[LifecycleState],
    ) -> None:
        if echoed.content != content:
            raise StoreVerificationError(
                f"Record {echoed.id} content mismatch after update",
                {
                    "record_id": echoed.id,
                    "expected_length": len(content),
                    "actual_length": len(echoed.content),
                    "actual_preview": preview(echoed.content, 80),
                },
            )
        if state is not None and self.write_state_field and echoed.state != state:
            raise StoreVerificationError(
                f"Record {echoed.id} state mismatch after update",
                {"record_id": echoed.id, "expected": state.value, "actual": echoed.state},
            )

    def _run_with_retries(
        self,
        record_id: str,
        action: str,
        operation: Callable[[], AnnotationRecord],
    ) -> UpdateOutcome:
        max_attempts = self.settings.max_attempts
        started = time.monotonic()
        delays = []
        last_exception: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                record = operation()
                if attempt > 1:
                    logger.info("Record %s %s succeeded on attempt %d/%d", record_id, action, attempt, max_attempts)
                return UpdateOutcome(
                    success=True,
                    record_id=record_id,
                    attempts=attempt,
                    max_attempts=max_attempts,
                    delays=delays,
                    elapsed_seconds=time.monotonic() - started,
                    record=record,
                )
            except NON_RETRIABLE_ERRORS as exc:
                logger.error("Record %s %s failed without retry: %s", record_id, action, exc)
                return UpdateOutcome(
                    success=False,
                    record_id=record_id,
                    attempts=attempt,
                    max_attempts=max_attempts,
                    last_error=exc,
                    delays=delays,
                    elapsed_seconds=time.monotonic() - started,
                )
            except Exception as exc:
                last_exception = exc
                logger.warning(
                    "Record %s %s failed on attempt %d/%d: %s",
                    record_id,
                    action,
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt < max_attempts:
                    delay = self.backoff_delay(attempt - 1)
                    delays.append(delay)
                    self.sleep(delay)

        logger.error(
            "Record %s %s failed after %d/%d attempts: %s",
            record_id,
            action,
            max_attempts,
            max_attempts,
            last_exception,
        )
        return UpdateOutcome(
            success=False,
            record_id=record_id,
            attempts=max_attempts,
            max_attempts=max_attempts,
            last_error=last_exception,
            delays=delays,
            elapsed_seconds=time.monotonic() - started,
        )
