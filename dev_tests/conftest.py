"""Shared pytest fixtures for Anchor Edit Engine tests."""

import os
import random
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from anchor_edit import (
    AnnotationStateClient,
    InMemoryAnnotationStore,
    InMemoryDocument,
    SafeApplyEngine,
)
from config import AnchorSettings, RetrySettings


# ============================================================================
# Text Fixtures
# ============================================================================

GREETING = "Hello world. Greeting."
FAREWELL = "Hello world. Farewell."


@pytest.fixture
def document():
    """Two paragraphs that both contain 'Hello world.' in different contexts."""
    return InMemoryDocument([GREETING, FAREWELL])


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def anchor_settings():
    """Default anchor settings with conflict flagging disabled."""
    return AnchorSettings(conflict_flag_seconds=0.0)


@pytest.fixture
def retry_settings():
    return RetrySettings()


@pytest.fixture
def sleeps():
    """Collects requested sleep durations instead of sleeping."""
    return []


# ============================================================================
# Store / Engine Fixtures
# ============================================================================

@pytest.fixture
def store():
    return InMemoryAnnotationStore()


@pytest.fixture
def farewell_record(store):
    """Edit request anchored to the second 'Hello world.'."""
    return store.create(
        "AI: make it warmer",
        quoted_text="Hello world.",
        quoted_context=FAREWELL,
    )


@pytest.fixture
def state_client(store, retry_settings, sleeps):
    return AnnotationStateClient(store, retry_settings, sleep=sleeps.append, rng=random.Random(42))


@pytest.fixture
def engine(document, store, state_client, anchor_settings, sleeps):
    return SafeApplyEngine(
        document,
        store,
        state_client=state_client,
        anchor_settings=anchor_settings,
        sleep=sleeps.append,
    )
