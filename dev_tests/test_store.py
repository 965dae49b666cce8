"""
Tests for anchor_edit.store - in-memory and HTTP annotation stores.
"""

import sys
import warnings
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from requests import exceptions as requests_exceptions

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import json_utils as json
from anchor_edit import (
    AnnotationRecord,
    AnnotationStore,
    HttpAnnotationStore,
    InMemoryAnnotationStore,
    InvalidInputError,
    LifecycleState,
    RecordNotFoundError,
    ReplyAction,
    StoreError,
    create_store,
)
from config import StoreSettings


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    if payload is not None:
        response.content = json.dumps(payload).encode("utf-8")
    else:
        response.content = text.encode("utf-8")
    response.text = text or response.content.decode("utf-8")
    return response


@pytest.fixture
def settings():
    return StoreSettings(
        base_url="https://annotations.example.com/api/",
        api_key="secret",
        document_id="doc-1",
        page_size=2,
    )


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def http_store(settings, session):
    return HttpAnnotationStore(settings, session=session)


# =============================================================================
# TESTS: records
# =============================================================================

class TestAnnotationRecord:
    """Tests for AnnotationRecord.from_api."""

    def test_comment_api_shape(self):
        record = AnnotationRecord.from_api(
            {
                "id": "c1",
                "content": "AI: fix",
                "quotedFileContent": {"mimeType": "text/html", "value": "Hello world."},
                "resolved": False,
                "replies": [
                    {"id": "r1", "content": "old", "deleted": True},
                    {"id": "r2", "content": "[STATE:PROCESSING] Generating"},
                ],
            }
        )
        assert record.quoted_text == "Hello world."
        assert [r.id for r in record.replies] == ["r2"]

    def test_unknown_state_is_dropped(self):
        record = AnnotationRecord.from_api({"id": "c1", "state": "archived"})
        assert record.state is None

    def test_known_state_and_aliases(self):
        record = AnnotationRecord.from_api(
            {"id": "c1", "state": "pending_review", "quotedText": "abc", "anchorHint": {"start": 3}}
        )
        assert record.state == LifecycleState.PENDING_REVIEW
        assert record.quoted_text == "abc"
        assert record.anchor_hint == {"start": 3}


# =============================================================================
# TESTS: in-memory store
# =============================================================================

class TestInMemoryAnnotationStore:
    """Tests for InMemoryAnnotationStore."""

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryAnnotationStore(), AnnotationStore)

    def test_create_assigns_id(self):
        store = InMemoryAnnotationStore()
        record = store.create("AI: x", quoted_text="abc")
        assert record.id.startswith("ann-")
        assert store.get(record.id).quoted_text == "abc"

    def test_get_returns_copies(self):
        store = InMemoryAnnotationStore()
        record = store.create("AI: x", quoted_text="abc", record_id="ann-1")
        record.content = "mutated"
        assert store.get("ann-1").content == "AI: x"

    def test_update_content_and_state(self):
        store = InMemoryAnnotationStore()
        store.create("AI: x", quoted_text="abc", record_id="ann-1")
        echoed = store.update("ann-1", {"content": "new", "state": LifecycleState.PROCESSING})
        assert echoed.content == "new"
        assert echoed.state == LifecycleState.PROCESSING

    def test_updated_state_is_stored_as_enum(self):
        store = InMemoryAnnotationStore()
        store.create("AI: x", quoted_text="abc", record_id="ann-1")
        store.update("ann-1", {"state": "accepted"})

        stored = store.get("ann-1")
        assert stored.state is LifecycleState.ACCEPTED
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert stored.model_dump()["state"] == LifecycleState.ACCEPTED

    def test_resolved_cannot_be_written_directly(self):
        store = InMemoryAnnotationStore()
        store.create("AI: x", quoted_text="abc", record_id="ann-1")
        with pytest.raises(InvalidInputError):
            store.update("ann-1", {"resolved": True})

    def test_missing_record(self):
        store = InMemoryAnnotationStore()
        with pytest.raises(RecordNotFoundError):
            store.get("nope")
        with pytest.raises(RecordNotFoundError):
            store.create_reply("nope", content="hi")

    def test_resolve_and_reopen_replies(self):
        store = InMemoryAnnotationStore()
        store.create("AI: x", quoted_text="abc", record_id="ann-1")
        store.create_reply("ann-1", action=ReplyAction.RESOLVE)
        assert store.get("ann-1").resolved
        store.create_reply("ann-1", action=ReplyAction.REOPEN)
        assert not store.get("ann-1").resolved
        assert len(store.list_for_document()) == 1

    def test_create_store_defaults_to_memory(self):
        assert isinstance(create_store(StoreSettings()), InMemoryAnnotationStore)


# =============================================================================
# TESTS: HTTP store
# =============================================================================

class TestHttpAnnotationStore:
    """Tests for HttpAnnotationStore against a mocked requests session."""

    def test_requires_configuration(self):
        with pytest.raises(InvalidInputError):
            HttpAnnotationStore(StoreSettings(base_url="https://x"))
        with pytest.raises(InvalidInputError):
            HttpAnnotationStore(StoreSettings(document_id="doc"))

    def test_get_request_shape(self, http_store, session):
        session.request.return_value = _response(
            payload={"id": "c1", "content": "AI: fix", "quotedFileContent": {"value": "Hello"}}
        )

        record = http_store.get("c1")

        assert record.id == "c1"
        assert record.quoted_text == "Hello"
        args, kwargs = session.request.call_args
        assert args == ("GET", "https://annotations.example.com/api/documents/doc-1/annotations/c1")
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"] == (10.0, 30.0)
        assert kwargs["data"] is None

    def test_update_sends_patch_body(self, http_store, session):
        session.request.return_value = _response(
            payload={"id": "c1", "content": "new", "state": "rejected"}
        )

        echoed = http_store.update("c1", {"content": "new", "state": LifecycleState.REJECTED})

        assert echoed.state == LifecycleState.REJECTED
        args, kwargs = session.request.call_args
        assert args[0] == "PATCH"
        assert json.loads(kwargs["data"]) == {"content": "new", "state": "rejected"}

    def test_reply_payload(self, http_store, session):
        session.request.return_value = _response(payload={"id": "r1", "action": "resolve"})

        reply = http_store.create_reply("c1", action=ReplyAction.RESOLVE)

        assert reply.action == ReplyAction.RESOLVE
        args, kwargs = session.request.call_args
        assert args[1].endswith("/annotations/c1/replies")
        assert json.loads(kwargs["data"]) == {"action": "resolve"}

    def test_not_found(self, http_store, session):
        session.request.return_value = _response(status_code=404, text="missing")
        with pytest.raises(RecordNotFoundError):
            http_store.get("c1")

    def test_server_error(self, http_store, session):
        session.request.return_value = _response(status_code=500, text="Internal error")
        with pytest.raises(StoreError) as exc_info:
            http_store.get("c1")
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["body"] == "Internal error"

    def test_connection_error(self, http_store, session):
        session.request.side_effect = requests_exceptions.ConnectionError("refused")
        with pytest.raises(StoreError) as exc_info:
            http_store.get("c1")
        assert "Cannot connect" in str(exc_info.value)

    def test_timeout(self, http_store, session):
        session.request.side_effect = requests_exceptions.Timeout("slow")
        with pytest.raises(StoreError):
            http_store.update("c1", {"content": "x"})

    def test_invalid_json(self, http_store, session):
        session.request.return_value = _response(text="<html>")
        with pytest.raises(StoreError):
            http_store.get("c1")

    def test_list_follows_page_tokens(self, http_store, session):
        session.request.side_effect = [
            _response(payload={"comments": [{"id": "c1"}, {"id": "c2"}], "nextPageToken": "p2"}),
            _response(payload={"comments": [{"id": "c3"}]}),
        ]

        records = http_store.list_for_document()

        assert [r.id for r in records] == ["c1", "c2", "c3"]
        first_params = session.request.call_args_list[0][1]["params"]
        second_params = session.request.call_args_list[1][1]["params"]
        assert first_params["pageSize"] == 2
        assert "pageToken" not in first_params
        assert second_params["pageToken"] == "p2"

    def test_create_store_uses_http_when_configured(self, settings):
        assert isinstance(create_store(settings), HttpAnnotationStore)
