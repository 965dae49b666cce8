"""
Anchor Edit Errors - Exception hierarchy.

Every exception carries a ``details`` dict with enough structured context
(record id, offsets, lengths) for external logging.
"""

from typing import Any, Dict, Optional


class AnchorEditError(Exception):
    """Base exception for anchor edit errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class InvalidInputError(AnchorEditError):
    """Malformed record id, empty quoted text or missing replacement. Never retried."""


class RecordNotFoundError(AnchorEditError):
    """The annotation record does not exist in the store."""

    def __init__(self, record_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Annotation record not found: {record_id}", details)
        self.record_id = record_id


class StoreError(AnchorEditError):
    """Transport or protocol failure while talking to the annotation store."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class StoreVerificationError(AnchorEditError):
    """The store echoed back fields that differ from what was requested."""


class VerificationError(AnchorEditError):
    """Text read back from the document differs from what was written."""
