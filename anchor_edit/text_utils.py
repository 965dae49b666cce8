"""
Anchor Edit Text Utilities - Normalization and sanitization helpers.

Three different normalizations are used by the engine and must not be mixed:

- ``normalize_for_similarity``: whitespace collapsed, trimmed and case-folded.
  Used only for scoring.
- ``normalize_search_text``: control characters removed, line separators
  unified and whitespace collapsed, case preserved. Used to build the needle
  for exact search in the document.
- ``sanitize_replacement``: control characters removed, line breaks unified,
  trimmed. Applied to generated text before it is written to the document.
"""

import re
from typing import Optional

# C0 and C1 control characters, excluding tab and newline which are layout.
_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u0008\u000B-\u001F\u007F-\u009F]")
_ALL_CONTROL_CHARS_RE = re.compile(r"[\u0000-\u001F\u007F-\u009F]")
_LINE_BREAKS_RE = re.compile(r"\r\n|\r|\u2028|\u2029")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: Optional[str]) -> str:
    """
    Collapse every whitespace run into a single space and trim.

    Non-breaking spaces count as whitespace.
    """
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text.replace("\u00A0", " ")).strip()


def normalize_for_similarity(text: Optional[str]) -> str:
    """Normalize text for similarity comparison (whitespace + case folding)."""
    return normalize_whitespace(text).casefold()


def normalize_line_breaks(text: str) -> str:
    """Convert CRLF, CR and Unicode line/paragraph separators to ``\\n``."""
    return _LINE_BREAKS_RE.sub("\n", text)


def strip_control_characters(text: str, keep_layout: bool = True) -> str:
    """
    Remove control characters.

    Args:
        text: Text to clean
        keep_layout: Keep ``\\n`` and ``\\t`` (default). When False every C0/C1
            control character is removed.
    """
    pattern = _CONTROL_CHARS_RE if keep_layout else _ALL_CONTROL_CHARS_RE
    return pattern.sub("", text)


def normalize_search_text(text: Optional[str]) -> str:
    """
    Build the needle used for exact search of a quoted snippet.

    Line separators become spaces after unification, so a snippet quoted
    across a soft line break still matches its single-line rendering.
    """
    if not text:
        return ""
    text = normalize_line_breaks(text)
    text = strip_control_characters(text)
    return normalize_whitespace(text)


def sanitize_replacement(text: Optional[str]) -> str:
    """
    Sanitize generated text for safe insertion into the document.

    Returns an empty string when nothing printable is left; callers treat
    that as a failed apply.
    """
    if not text:
        return ""
    text = normalize_line_breaks(text)
    text = strip_control_characters(text)
    return text.strip()


def get_context_window(
    container_text: str,
    start: int,
    end_inclusive: int,
    window_chars: int = 50,
) -> str:
    """
    Return the span plus ``window_chars`` characters on each side.

    The window is clipped to the bounds of the container; it never crosses
    into neighbouring containers.
    """
    if not container_text:
        return ""
    context_start = max(0, start - window_chars)
    context_end = min(len(container_text), end_inclusive + 1 + window_chars)
    return container_text[context_start:context_end]


def preview(text: Optional[str], limit: int = 100) -> str:
    """Shorten text for log lines."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
