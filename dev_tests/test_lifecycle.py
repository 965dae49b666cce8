"""
Tests for anchor_edit.lifecycle - state derivation and eligibility.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from anchor_edit import (
    AnnotationRecord,
    InMemoryDocument,
    LifecycleState,
    ReplyAction,
    ReplyRecord,
    derive_state,
    is_eligible_for_processing,
    list_eligible_anchors,
)
from anchor_edit.lifecycle import extract_instruction, find_marker, format_marker
from config import AnchorSettings


def _record(**kwargs):
    data = {"id": "ann-1", "content": "AI: fix grammar", "quoted_text": "Hello world."}
    data.update(kwargs)
    return AnnotationRecord(**data)


# =============================================================================
# TESTS: markers and instructions
# =============================================================================

class TestMarkers:
    """Tests for marker helpers."""

    def test_format_marker(self):
        assert format_marker(LifecycleState.PENDING_REVIEW) == "[STATE:PENDING_REVIEW]"

    def test_unmarked_state_has_no_marker(self):
        with pytest.raises(KeyError):
            format_marker(LifecycleState.INVALID)

    def test_last_marker_wins(self):
        text = "[STATE:PROCESSING] working... [STATE:ACCEPTED] done"
        assert find_marker(text) == LifecycleState.ACCEPTED

    def test_no_marker(self):
        assert find_marker("plain text") is None
        assert find_marker(None) is None


class TestExtractInstruction:
    """Tests for extract_instruction."""

    def test_strips_prefix(self):
        assert extract_instruction("  AI:  make it shorter ", "AI:") == "make it shorter"

    def test_missing_prefix(self):
        assert extract_instruction("make it shorter", "AI:") is None

    def test_custom_prefix(self):
        assert extract_instruction("@edit tighten", "@edit") == "tighten"


# =============================================================================
# TESTS: derive_state
# =============================================================================

class TestDeriveState:
    """Tests for derive_state."""

    def test_new_request_is_unprocessed(self):
        assert derive_state(_record()) == LifecycleState.UNPROCESSED

    def test_explicit_state_is_authoritative(self):
        record = _record(
            state=LifecycleState.PENDING_REVIEW,
            replies=[ReplyRecord(content="[STATE:REJECTED] no")],
        )
        assert derive_state(record) == LifecycleState.PENDING_REVIEW

    def test_newest_reply_marker(self):
        record = _record(
            replies=[
                ReplyRecord(content="[STATE:PROCESSING] Generating"),
                ReplyRecord(content="thanks"),
                ReplyRecord(content="[STATE:PENDING_REVIEW] Ready"),
            ]
        )
        assert derive_state(record) == LifecycleState.PENDING_REVIEW

    def test_marker_in_content(self):
        record = _record(content="[STATE:REJECTED] Changes rejected.")
        assert derive_state(record) == LifecycleState.REJECTED

    def test_missing_prefix_is_invalid(self):
        assert derive_state(_record(content="just a remark")) == LifecycleState.INVALID

    def test_missing_quoted_text_is_invalid(self):
        assert derive_state(_record(quoted_text="  ")) == LifecycleState.INVALID


# =============================================================================
# TESTS: eligibility
# =============================================================================

class TestEligibility:
    """Tests for is_eligible_for_processing."""

    def test_unprocessed_is_eligible(self):
        assert is_eligible_for_processing(_record())

    def test_rejected_is_eligible(self):
        assert is_eligible_for_processing(_record(state=LifecycleState.REJECTED))

    @pytest.mark.parametrize(
        "state",
        [LifecycleState.PROCESSING, LifecycleState.PENDING_REVIEW, LifecycleState.ACCEPTED],
    )
    def test_other_states_are_not_eligible(self, state):
        assert not is_eligible_for_processing(_record(state=state))

    def test_resolved_is_never_eligible(self):
        record = _record(resolved=True, replies=[ReplyRecord(action=ReplyAction.RESOLVE)])
        assert not is_eligible_for_processing(record)

    def test_missing_quoted_text_is_not_eligible(self):
        assert not is_eligible_for_processing(_record(quoted_text=""))


class TestListEligibleAnchors:
    """Tests for list_eligible_anchors."""

    def test_lists_requests_with_occurrences(self):
        doc = InMemoryDocument(["Hello world. Greeting.", "Hello world. Farewell."])
        records = [
            _record(id="ann-1"),
            _record(id="ann-2", state=LifecycleState.PROCESSING),
            _record(id="ann-3", content="not a request"),
            _record(id="ann-4", quoted_text="Farewell.", content="AI: translate"),
        ]

        anchors = list_eligible_anchors(doc, records, AnchorSettings())

        assert [a.id for a in anchors] == ["ann-1", "ann-4"]
        assert anchors[0].instruction == "fix grammar"
        assert anchors[0].occurrences == 2
        assert anchors[1].occurrences == 1
        assert anchors[1].state == LifecycleState.UNPROCESSED

    def test_rejected_request_without_prefix_is_skipped(self):
        """A rejected record is relisted only once its content carries the prefix again."""
        doc = InMemoryDocument(["Hello world."])
        records = [
            _record(id="ann-1", content="[STATE:REJECTED] Changes rejected.", state=LifecycleState.REJECTED),
            _record(id="ann-2", content="AI: try again", state=LifecycleState.REJECTED),
        ]
        anchors = list_eligible_anchors(doc, records, AnchorSettings())
        assert [a.id for a in anchors] == ["ann-2"]

    def test_custom_prefix(self):
        doc = InMemoryDocument(["Hello world."])
        records = [_record(content="@edit shorten"), _record(id="ann-2")]
        anchors = list_eligible_anchors(doc, records, AnchorSettings(instruction_prefix="@edit"))
        assert [a.instruction for a in anchors] == ["shorten"]

    def test_missing_text_has_zero_occurrences(self):
        doc = InMemoryDocument(["Something else."])
        anchors = list_eligible_anchors(doc, [_record()], AnchorSettings())
        assert anchors[0].occurrences == 0
