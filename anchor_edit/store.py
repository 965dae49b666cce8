"""
Anchor Edit Annotation Store - Persistence of annotation records.

The store owns the records; the engine only ever holds copies fetched for
the current operation. Acceptance is recorded with a *resolve* reply, never
by writing ``resolved`` directly, so ``update`` only accepts content and
state changes.

Implementations:
- InMemoryAnnotationStore: process-local store, used by the service when no
  store URL is configured and by the tests
- HttpAnnotationStore: REST client (requests) for a comment-style API
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

import requests
from requests import exceptions as requests_exceptions

import json_utils as json
from config import StoreSettings, config

from .errors import InvalidInputError, RecordNotFoundError, StoreError
from .models import AnnotationRecord, LifecycleState, ReplyAction, ReplyRecord

logger = logging.getLogger(__name__)

# Fields a record update may change.
UPDATABLE_FIELDS = frozenset({"content", "state"})

DEFAULT_RECORD_FIELDS = "id,content,quotedFileContent,quotedContext,anchor,resolved,replies,state"


@runtime_checkable
class AnnotationStore(Protocol):
    """Operations the core needs from the annotation store."""

    def get(self, record_id: str, fields: Optional[str] = None) -> AnnotationRecord: ...

    def update(
        self, record_id: str, changes: Dict[str, Any], fields: Optional[str] = None
    ) -> AnnotationRecord: ...

    def list_for_document(self, fields: Optional[str] = None) -> List[AnnotationRecord]: ...

    def create_reply(
        self,
        record_id: str,
        content: Optional[str] = None,
        action: Optional[ReplyAction] = None,
    ) -> ReplyRecord: ...


def _validate_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InvalidInputError(
            f"Fields cannot be updated directly: {', '.join(sorted(unknown))}",
            {"fields": sorted(unknown)},
        )
    payload = dict(changes)
    state = payload.get("state")
    if isinstance(state, LifecycleState):
        payload["state"] = state.value
    return payload


class InMemoryAnnotationStore:
    """
    Thread-safe in-memory annotation store.

    Example:
        store = InMemoryAnnotationStore()
        record = store.create("AI: make this friendlier", quoted_text="Dear Sir,")
        store.create_reply(record.id, content="done", action=ReplyAction.RESOLVE)
    """

    def __init__(self, records: Optional[Iterable[AnnotationRecord]] = None):
        self._records: Dict[str, AnnotationRecord] = {}
        self._lock = threading.RLock()
        for record in records or []:
            self.add(record)

    def add(self, record: AnnotationRecord) -> AnnotationRecord:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    def create(
        self,
        content: str,
        quoted_text: str,
        quoted_context: Optional[str] = None,
        anchor_hint: Any = None,
        record_id: Optional[str] = None,
    ) -> AnnotationRecord:
        """Create a record; the store assigns the id unless one is given."""
        record = AnnotationRecord(
            id=record_id or f"ann-{uuid.uuid4().hex[:12]}",
            content=content,
            quoted_text=quoted_text,
            quoted_context=quoted_context,
            anchor_hint=anchor_hint,
        )
        return self.add(record)

    def get(self, record_id: str, fields: Optional[str] = None) -> AnnotationRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            return record.model_copy(deep=True)

    def update(
        self, record_id: str, changes: Dict[str, Any], fields: Optional[str] = None
    ) -> AnnotationRecord:
        payload = _validate_changes(changes)
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            # model_copy(update=...) skips validation, so the enum field is rebuilt here.
            updated = AnnotationRecord.model_validate({**record.model_dump(), **payload})
            self._records[record_id] = updated
            return updated.model_copy(deep=True)

    def list_for_document(self, fields: Optional[str] = None) -> List[AnnotationRecord]:
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    def create_reply(
        self,
        record_id: str,
        content: Optional[str] = None,
        action: Optional[ReplyAction] = None,
    ) -> ReplyRecord:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            reply = ReplyRecord(id=f"rep-{uuid.uuid4().hex[:8]}", content=content or "", action=action)
            record.replies.append(reply)
            if action == ReplyAction.RESOLVE:
                record.resolved = True
            elif action == ReplyAction.REOPEN:
                record.resolved = False
            return reply.model_copy(deep=True)


class HttpAnnotationStore:
    """
    REST client for a comment-style annotation API.

    Endpoints (relative to ``base_url``):
        GET   /documents/{document_id}/annotations
        GET   /documents/{document_id}/annotations/{record_id}
        PATCH /documents/{document_id}/annotations/{record_id}
        POST  /documents/{document_id}/annotations/{record_id}/replies
    """

    def __init__(
        self,
        settings: Optional[StoreSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or config.STORE
        if not self.settings.base_url:
            raise InvalidInputError("Annotation store base_url is not configured")
        if not self.settings.document_id:
            raise InvalidInputError("Annotation store document_id is not configured")
        self.base_url = self.settings.base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = (self.settings.connect_timeout, self.settings.read_timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _endpoint(self, record_id: Optional[str] = None, suffix: str = "") -> str:
        path = f"/documents/{self.settings.document_id}/annotations"
        if record_id is not None:
            path += f"/{record_id}"
        return path + suffix

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> Any:
        """Make an HTTP request and decode the JSON body."""
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(
                method,
                url,
                data=json.dumps(payload) if payload is not None else None,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests_exceptions.ConnectionError as e:
            raise StoreError(f"Cannot connect to annotation store at {self.base_url}") from e
        except requests_exceptions.Timeout as e:
            raise StoreError(f"Request to {endpoint} timed out after {self.timeout}s") from e
        except requests_exceptions.RequestException as e:
            raise StoreError(f"Request failed: {e}") from e

        if response.status_code == 404 and record_id is not None:
            raise RecordNotFoundError(record_id, {"status_code": 404})
        if response.status_code not in (200, 201):
            raise StoreError(
                f"{method} {endpoint} failed: {response.status_code}",
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )

        if not response.content:
            return {}
        try:
            return json.loads(response.content)
        except json.JSONDecodeError as e:
            raise StoreError(
                f"Invalid JSON from {method} {endpoint}",
                status_code=response.status_code,
            ) from e

    def get(self, record_id: str, fields: Optional[str] = None) -> AnnotationRecord:
        data = self._request(
            "GET",
            self._endpoint(record_id),
            params={"fields": fields or DEFAULT_RECORD_FIELDS},
            record_id=record_id,
        )
        return AnnotationRecord.from_api(data)

    def update(
        self, record_id: str, changes: Dict[str, Any], fields: Optional[str] = None
    ) -> AnnotationRecord:
        data = self._request(
            "PATCH",
            self._endpoint(record_id),
            payload=_validate_changes(changes),
            params={"fields": fields or "id,content,resolved,state"},
            record_id=record_id,
        )
        return AnnotationRecord.from_api(data)

    def list_for_document(self, fields: Optional[str] = None) -> List[AnnotationRecord]:
        """All non-deleted annotations, following pagination tokens."""
        records: List[AnnotationRecord] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {
                "fields": fields or DEFAULT_RECORD_FIELDS,
                "pageSize": self.settings.page_size,
                "includeDeleted": "false",
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", self._endpoint(), params=params)
            items = data.get("annotations", data.get("comments", []))
            records.extend(AnnotationRecord.from_api(item) for item in items)
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Listed %d annotation records", len(records))
        return records

    def create_reply(
        self,
        record_id: str,
        content: Optional[str] = None,
        action: Optional[ReplyAction] = None,
    ) -> ReplyRecord:
        payload: Dict[str, Any] = {}
        if content:
            payload["content"] = content
        if action is not None:
            payload["action"] = action.value
        data = self._request(
            "POST",
            self._endpoint(record_id, "/replies"),
            payload=payload,
            params={"fields": "id,content,action"},
            record_id=record_id,
        )
        return ReplyRecord.model_validate(data)


def create_store(settings: Optional[StoreSettings] = None) -> AnnotationStore:
    """HTTP store when a base URL is configured, in-memory store otherwise."""
    settings = settings or config.STORE
    if settings.base_url:
        return HttpAnnotationStore(settings)
    logger.info("No annotation store URL configured, using in-memory store")
    return InMemoryAnnotationStore()
