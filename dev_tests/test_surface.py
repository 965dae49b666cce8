"""
Tests for anchor_edit.surface - the in-memory document surface.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from anchor_edit import DocumentSurface, FlaggableSurface, InMemoryDocument


class TestInMemoryDocument:
    """Tests for reads and mutations."""

    def test_satisfies_protocols(self):
        doc = InMemoryDocument(["a"])
        assert isinstance(doc, DocumentSurface)
        assert isinstance(doc, FlaggableSurface)

    def test_from_text_and_full_text(self):
        doc = InMemoryDocument.from_text("First.\nSecond.")
        assert doc.paragraphs == ["First.", "Second."]
        assert doc.get_full_text() == "First.\nSecond."

    def test_container_offset(self):
        doc = InMemoryDocument(["abc", "de", "f"])
        assert [doc.container_offset(i) for i in range(3)] == [0, 4, 7]

    def test_occurrences_in_container_order(self):
        doc = InMemoryDocument(["x y x", "y x"])
        found = [(o.container_ref, o.start, o.end) for o in doc.find_all_occurrences("x")]
        assert found == [(0, 0, 0), (0, 4, 4), (1, 2, 2)]

    def test_empty_needle_has_no_occurrences(self):
        assert InMemoryDocument(["abc"]).find_all_occurrences("") == []

    def test_read_range_is_inclusive(self):
        doc = InMemoryDocument(["Hello world."])
        assert doc.read_range(0, 6, 10) == "world"
        assert doc.read_range(0, 3, 2) == ""

    def test_delete_and_insert(self):
        doc = InMemoryDocument(["Hello world."])
        doc.delete_range(0, 6, 10)
        doc.insert_at(0, 6, "there")
        assert doc.get_full_text() == "Hello there."

    @pytest.mark.parametrize("start,end", [(-1, 2), (3, 2), (0, 99)])
    def test_delete_rejects_bad_ranges(self, start, end):
        with pytest.raises(ValueError):
            InMemoryDocument(["Hello"]).delete_range(0, start, end)

    def test_insert_rejects_bad_offset(self):
        with pytest.raises(ValueError):
            InMemoryDocument(["Hello"]).insert_at(0, 6, "!")

    @pytest.mark.parametrize("ref", [5, -1, "0", True])
    def test_invalid_container(self, ref):
        with pytest.raises(ValueError):
            InMemoryDocument(["a", "b"]).get_container_text(ref)

    def test_flag_and_restore(self):
        doc = InMemoryDocument(["Hello world."])
        previous = doc.flag_range(0, 0, 4, "#FFEB3B")
        assert doc.flags == {(0, 0, 4): "#FFEB3B"}
        doc.clear_flag(0, 0, 4, previous)
        assert doc.flags == {}

    def test_set_text(self):
        doc = InMemoryDocument(["a"])
        doc.set_text("x\ny")
        assert doc.paragraphs == ["x", "y"]
