"""
Anchor Edit Router - FastAPI endpoints for the Anchor Edit engine.

Endpoints:
- GET  /anchor-edit/anchors                    - Edit requests eligible for processing
- POST /anchor-edit/anchors/{record_id}/apply  - Accept or reject a generated replacement
- POST /anchor-edit/anchors/{record_id}/state  - Announce processing / pending review
- GET  /anchor-edit/document                   - Current document text
- PUT  /anchor-edit/document                   - Load text into the in-memory document
- POST /anchor-edit/suggestions                - Parse and locate inline suggestions
- POST /anchor-edit/suggestions/apply          - Apply one located suggestion

Handlers are plain ``def`` functions: the engine blocks during store calls
and backoff sleeps, so FastAPI runs them in its threadpool.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from .engine import SafeApplyEngine, validate_record_id
from .errors import InvalidInputError, RecordNotFoundError, StoreError
from .lifecycle import list_eligible_anchors
from .models import AnchorRequest, Decision, LifecycleState
from .suggestions import LocatedSuggestion, find_suggestion_locations, parse_suggested_changes
from .surface import InMemoryDocument

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Anchor Edit"])

# States callers may announce; terminal states are only reached through apply.
ANNOUNCEABLE_STATES = {LifecycleState.PROCESSING, LifecycleState.PENDING_REVIEW}


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================


class ApplyRequest(BaseModel):
    """Decision on a generated replacement."""

    decision: Decision = Field(description="accept or reject")
    replacement_text: Optional[str] = Field(
        default=None,
        description="Generated text to insert (required to accept)",
        max_length=100000,
    )


class StateRequest(BaseModel):
    """State announcement for an edit request."""

    state: LifecycleState = Field(description="processing or pending_review")
    message: str = Field(default="", max_length=2000)


class StateResponse(BaseModel):
    success: bool
    record_id: str
    state: LifecycleState
    attempts: int
    error: Optional[str] = None


class DocumentBody(BaseModel):
    text: str = Field(description="Full document text; paragraphs separated by newlines")


class DocumentResponse(BaseModel):
    text: str
    length: int
    version: str


class SuggestionsRequest(BaseModel):
    response_text: str = Field(description="Generated text containing <suggestion> blocks")


class SuggestionsResponse(BaseModel):
    located: List[Dict[str, Any]]
    unlocated: List[Dict[str, Any]]


class ApplySuggestionRequest(BaseModel):
    """A located suggestion, as returned by POST /suggestions."""

    original: str = Field(description="Text the suggestion replaces, as written in the response")
    revised: str = Field(description="Suggested text", max_length=100000)
    start: int = Field(ge=0, description="Document offset where the suggestion was located")
    matched_text: str = Field(min_length=1, description="Document text at the location")
    context: str = Field(default="", description="Text around the location, used for disambiguation")
    fuzzy: bool = False
    similarity: float = Field(default=1.0, ge=0.0, le=1.0)


# =============================================================================
# HELPERS
# =============================================================================


def _engine(request: Request) -> SafeApplyEngine:
    return request.app.state.engine


def _document_response(engine: SafeApplyEngine) -> DocumentResponse:
    snapshot = engine.snapshot()
    return DocumentResponse(text=snapshot.text, length=len(snapshot), version=snapshot.version)


# =============================================================================
# ANCHOR ENDPOINTS
# =============================================================================


@router.get("/anchors", response_model=List[AnchorRequest])
def list_anchors(request: Request):
    """List edit requests that may be (re)processed."""
    engine = _engine(request)
    try:
        records = engine.store.list_for_document()
    except StoreError as e:
        logger.error("Listing annotations failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    return list_eligible_anchors(engine.surface, records, engine.anchor_settings)


@router.post("/anchors/{record_id}/apply")
def apply_decision(record_id: str, body: ApplyRequest, request: Request) -> Dict[str, Any]:
    """
    Accept or reject the replacement for one edit request.

    Always returns 200 with the apply result; inspect ``outcome`` and
    ``reason`` for blocked or failed applies.
    """
    result = _engine(request).apply(record_id, body.decision, body.replacement_text)
    return result.to_dict()


@router.post("/anchors/{record_id}/state", response_model=StateResponse)
def announce_state(record_id: str, body: StateRequest, request: Request):
    """Mark an edit request as processing or pending review."""
    if body.state not in ANNOUNCEABLE_STATES:
        raise HTTPException(
            status_code=400,
            detail=f"State '{body.state.value}' cannot be set directly",
        )
    try:
        validate_record_id(record_id)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    outcome = _engine(request).state_client.post_state_reply(record_id, body.state, body.message)
    if isinstance(outcome.last_error, RecordNotFoundError):
        raise HTTPException(status_code=404, detail=str(outcome.last_error))

    return StateResponse(
        success=outcome.success,
        record_id=record_id,
        state=body.state,
        attempts=outcome.attempts,
        error=str(outcome.last_error) if outcome.last_error else None,
    )


# =============================================================================
# DOCUMENT ENDPOINTS
# =============================================================================


@router.get("/document", response_model=DocumentResponse)
def get_document(request: Request):
    return _document_response(_engine(request))


@router.put("/document", response_model=DocumentResponse)
def put_document(body: DocumentBody, request: Request):
    """Replace the text of the in-memory document."""
    engine = _engine(request)
    if not isinstance(engine.surface, InMemoryDocument):
        raise HTTPException(status_code=409, detail="Document is managed by an external surface")
    with engine.lock:
        engine.surface.set_text(body.text)
    return _document_response(engine)


# =============================================================================
# SUGGESTION ENDPOINTS
# =============================================================================


@router.post("/suggestions", response_model=SuggestionsResponse)
def locate_suggestions(body: SuggestionsRequest, request: Request):
    """Parse inline suggestions and locate them in the current document."""
    engine = _engine(request)
    suggestions = parse_suggested_changes(body.response_text)
    locations = find_suggestion_locations(
        engine.snapshot().text,
        suggestions,
        engine.anchor_settings.context_window_chars,
    )
    return SuggestionsResponse(**locations.to_dict())


@router.post("/suggestions/apply")
def apply_suggestion(body: ApplySuggestionRequest, request: Request) -> Dict[str, Any]:
    """
    Replace the text of one located suggestion with its revision.

    The matched text is resolved again against the live document, so a
    suggestion located before a later edit is blocked rather than misapplied.
    """
    suggestion = LocatedSuggestion(**body.model_dump())
    result = _engine(request).apply_suggestion(suggestion)
    return result.to_dict()
