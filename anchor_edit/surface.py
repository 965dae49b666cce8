"""
Anchor Edit Document Surface - The editable document as the engine sees it.

The engine never edits a string it owns: it calls a DocumentSurface, which
may be backed by a live editor. All offsets are character offsets inside a
text container, and every ``end`` offset is inclusive.

InMemoryDocument is the reference implementation: one container per
paragraph, paragraphs joined with ``\\n`` in the full text.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .models import Occurrence


@runtime_checkable
class DocumentSurface(Protocol):
    """Operations the engine needs from the document."""

    def get_full_text(self) -> str: ...

    def find_all_occurrences(self, needle: str) -> List[Occurrence]: ...

    def get_container_text(self, container_ref: Any) -> str: ...

    def container_offset(self, container_ref: Any) -> int: ...

    def read_range(self, container_ref: Any, start: int, end: int) -> str: ...

    def delete_range(self, container_ref: Any, start: int, end: int) -> None: ...

    def insert_at(self, container_ref: Any, offset: int, text: str) -> None: ...


@runtime_checkable
class FlaggableSurface(Protocol):
    """Optional: surfaces that can visually flag a span."""

    def flag_range(self, container_ref: Any, start: int, end: int, color: str) -> Any: ...

    def clear_flag(self, container_ref: Any, start: int, end: int, previous: Any) -> None: ...


class InMemoryDocument:
    """
    Paragraph-based in-memory document.

    Example:
        doc = InMemoryDocument.from_text("First paragraph.\\nSecond paragraph.")
        doc.find_all_occurrences("paragraph")   # one Occurrence per match
        doc.delete_range(0, 0, 4)               # removes "First"
    """

    SEPARATOR = "\n"

    def __init__(self, paragraphs: Optional[List[str]] = None):
        self._paragraphs: List[str] = list(paragraphs or [""])
        self._flags: Dict[Tuple[int, int, int], str] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_text(cls, text: str) -> "InMemoryDocument":
        return cls((text or "").split(cls.SEPARATOR))

    # =========================================================================
    # READS
    # =========================================================================

    @property
    def paragraphs(self) -> List[str]:
        with self._lock:
            return list(self._paragraphs)

    @property
    def flags(self) -> Dict[Tuple[int, int, int], str]:
        """Active flags keyed by (container, start, end)."""
        with self._lock:
            return dict(self._flags)

    def get_full_text(self) -> str:
        with self._lock:
            return self.SEPARATOR.join(self._paragraphs)

    def set_text(self, text: str) -> None:
        """Replace the whole document."""
        with self._lock:
            self._paragraphs = (text or "").split(self.SEPARATOR)
            self._flags.clear()

    def find_all_occurrences(self, needle: str) -> List[Occurrence]:
        """
        Every match of ``needle`` in container order.

        Matches may overlap inside a container; they never span containers.
        """
        if not needle:
            return []
        occurrences: List[Occurrence] = []
        with self._lock:
            for index, paragraph in enumerate(self._paragraphs):
                pos = paragraph.find(needle)
                while pos != -1:
                    occurrences.append(Occurrence(index, pos, pos + len(needle) - 1))
                    pos = paragraph.find(needle, pos + 1)
        return occurrences

    def get_container_text(self, container_ref: Any) -> str:
        with self._lock:
            return self._paragraphs[self._index(container_ref)]

    def container_offset(self, container_ref: Any) -> int:
        index = self._index(container_ref)
        with self._lock:
            return sum(len(p) + len(self.SEPARATOR) for p in self._paragraphs[:index])

    def read_range(self, container_ref: Any, start: int, end: int) -> str:
        """Text in [start, end]; clipped to the container."""
        if end < start:
            return ""
        text = self.get_container_text(container_ref)
        return text[max(0, start):end + 1]

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def delete_range(self, container_ref: Any, start: int, end: int) -> None:
        with self._lock:
            index = self._index(container_ref)
            text = self._paragraphs[index]
            if start < 0 or end < start or end >= len(text):
                raise ValueError(
                    f"Invalid text range: start={start}, end={end}, length={len(text)}"
                )
            self._paragraphs[index] = text[:start] + text[end + 1:]

    def insert_at(self, container_ref: Any, offset: int, text: str) -> None:
        with self._lock:
            index = self._index(container_ref)
            current = self._paragraphs[index]
            if offset < 0 or offset > len(current):
                raise ValueError(f"Invalid insert offset: {offset}, length={len(current)}")
            self._paragraphs[index] = current[:offset] + text + current[offset:]

    # =========================================================================
    # FLAGS
    # =========================================================================

    def flag_range(self, container_ref: Any, start: int, end: int, color: str) -> Optional[str]:
        """Flag a span; returns the previous flag color for that span, if any."""
        key = (self._index(container_ref), start, end)
        with self._lock:
            previous = self._flags.get(key)
            self._flags[key] = color
        return previous

    def clear_flag(self, container_ref: Any, start: int, end: int, previous: Optional[str]) -> None:
        key = (self._index(container_ref), start, end)
        with self._lock:
            if previous is None:
                self._flags.pop(key, None)
            else:
                self._flags[key] = previous

    def _index(self, container_ref: Any) -> int:
        if not isinstance(container_ref, int) or isinstance(container_ref, bool):
            raise ValueError(f"Invalid container reference: {container_ref!r}")
        if container_ref < 0 or container_ref >= len(self._paragraphs):
            raise ValueError(
                f"Container {container_ref} out of range (paragraphs={len(self._paragraphs)})"
            )
        return container_ref
