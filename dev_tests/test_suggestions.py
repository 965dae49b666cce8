"""
Tests for anchor_edit.suggestions - parsing and locating inline suggestions.
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from anchor_edit import (
    SuggestedChange,
    find_suggestion_locations,
    parse_suggested_changes,
)

DOCUMENT = "The quick brown fox.\nIt jumps over the lazy dog."


class TestParseSuggestedChanges:
    """Tests for parse_suggested_changes."""

    def test_multiple_blocks_in_order(self):
        text = (
            "Some thoughts first. "
            "<suggestion> quick brown <changeto/> swift red </suggestion> and "
            "<suggestion>lazy dog<changeto/>sleepy dog</suggestion>"
        )
        assert parse_suggested_changes(text) == [
            SuggestedChange("quick brown", "swift red"),
            SuggestedChange("lazy dog", "sleepy dog"),
        ]

    def test_blocks_may_span_lines(self):
        text = "<suggestion>line one\nline two<changeto/>merged</suggestion>"
        assert parse_suggested_changes(text) == [SuggestedChange("line one\nline two", "merged")]

    def test_no_blocks(self):
        assert parse_suggested_changes("nothing here") == []
        assert parse_suggested_changes(None) == []

    def test_incomplete_block_is_ignored(self):
        assert parse_suggested_changes("<suggestion>a<changeto/>b") == []


class TestFindSuggestionLocations:
    """Tests for find_suggestion_locations."""

    def test_exact_match(self):
        result = find_suggestion_locations(DOCUMENT, [SuggestedChange("lazy dog", "sleepy dog")])

        assert result.unlocated == []
        located = result.located[0]
        assert located.start == 39
        assert located.length == 8
        assert located.matched_text == "lazy dog"
        assert not located.fuzzy
        assert located.similarity == 1.0
        assert "lazy dog" in located.context

    def test_fuzzy_match(self):
        """A slightly misquoted original is located by the best similar window."""
        result = find_suggestion_locations(DOCUMENT, [SuggestedChange("jumps ovr the", "leaps over the")])

        located = result.located[0]
        assert located.fuzzy
        assert located.similarity > 0.7
        assert "jumps" in located.matched_text

    def test_unrelated_text_is_unlocated(self):
        suggestion = SuggestedChange("completely different words", "x")
        result = find_suggestion_locations(DOCUMENT, [suggestion])
        assert result.located == []
        assert result.unlocated == [suggestion]

    def test_empty_original_is_unlocated(self):
        suggestion = SuggestedChange("", "inserted")
        assert find_suggestion_locations(DOCUMENT, [suggestion]).unlocated == [suggestion]

    def test_empty_document(self):
        suggestion = SuggestedChange("lazy dog", "sleepy dog")
        assert find_suggestion_locations("", [suggestion]).unlocated == [suggestion]

    def test_to_dict(self):
        result = find_suggestion_locations(DOCUMENT, [SuggestedChange("lazy dog", "sleepy dog")])
        payload = result.to_dict()
        assert payload["located"][0]["start"] == 39
        assert payload["located"][0]["length"] == 8
        assert payload["unlocated"] == []
