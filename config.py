"""
Configuration for the Anchor Edit Engine
========================================

Central configuration for anchor resolution, safe-apply behaviour, the
annotation store connection and the retry policy used when writing
annotation records.

Values are read once from environment variables (optionally from a .env
file). The core never reads this module's globals directly: the engine and
the state client receive their settings objects at construction, and only
fall back to ``config`` when the caller does not provide them.
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

TRUTHY_ENV_VALUES = {"1", "true", "yes", "on"}


class RetrySettings(BaseModel):
    """Bounded retry with exponential backoff and full jitter."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Maximum attempts for a single annotation record update",
    )
    initial_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay before the first retry (doubled on each retry)",
    )
    max_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Upper bound of the exponential part of the delay",
    )
    jitter_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Random jitter drawn uniformly from [0, jitter_seconds)",
    )


class AnchorSettings(BaseModel):
    """Anchor resolution and apply settings."""

    similarity_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Minimum context similarity to accept one of several candidate spans",
    )
    context_window_chars: int = Field(
        default=50,
        ge=0,
        description="Characters of context taken on each side of a candidate span",
    )
    instruction_prefix: str = Field(
        default="AI:",
        min_length=1,
        description="Prefix that marks an annotation as an edit request",
    )
    use_anchor_hint: bool = Field(
        default=True,
        description="Use the store's anchor hint to order candidates (never to skip verification)",
    )
    conflict_flag_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=60.0,
        description="How long a blocked span stays flagged in the document surface (0 disables)",
    )
    conflict_flag_color: str = Field(
        default="#FFEB3B",
        description="Background color used to flag a blocked span",
    )


class StoreSettings(BaseModel):
    """Annotation store connection settings."""

    base_url: str = Field(
        default="",
        description="Base URL of the annotation store API (empty uses the in-memory store)",
    )
    api_key: str = Field(default="", description="Bearer token for the annotation store")
    document_id: str = Field(default="", description="Identifier of the annotated document")
    connect_timeout: float = Field(default=10.0, gt=0, description="Connect timeout in seconds")
    read_timeout: float = Field(default=30.0, gt=0, description="Read timeout in seconds")
    page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Records requested per page when listing annotations",
    )


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class Config(BaseModel):
    """Configuration settings for the Anchor Edit Engine."""

    model_config = {"populate_by_name": True}

    RETRY: RetrySettings = Field(default_factory=RetrySettings, description="Record update retry policy")
    ANCHOR: AnchorSettings = Field(default_factory=AnchorSettings, description="Anchor resolution settings")
    STORE: StoreSettings = Field(default_factory=StoreSettings, description="Annotation store settings")

    # Service
    APP_HOST: str = Field(default="0.0.0.0", description="Host for the HTTP service")
    APP_PORT: int = Field(default=8000, description="Port for the HTTP service")
    APP_RELOAD: bool = Field(default=False, description="Enable uvicorn auto-reload")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    def __init__(self, **data):
        super().__init__(**data)
        self._load_retry_overrides()
        self._load_anchor_overrides()
        self._load_store_overrides()

        self.APP_HOST = os.getenv("APP_HOST", self.APP_HOST)
        self.APP_PORT = _env_int("APP_PORT") or self.APP_PORT
        self.APP_RELOAD = os.getenv("APP_RELOAD", str(self.APP_RELOAD)).lower() in TRUTHY_ENV_VALUES
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", self.LOG_LEVEL).upper()

    def _load_retry_overrides(self) -> None:
        attempts = _env_int("STORE_RETRY_MAX_ATTEMPTS")
        if attempts is not None and 1 <= attempts <= 20:
            self.RETRY.max_attempts = attempts

        initial = _env_float("STORE_RETRY_INITIAL_DELAY")
        if initial is not None and initial >= 0:
            self.RETRY.initial_delay_seconds = initial

        maximum = _env_float("STORE_RETRY_MAX_DELAY")
        if maximum is not None and maximum >= 0:
            self.RETRY.max_delay_seconds = maximum

        jitter = _env_float("STORE_RETRY_JITTER")
        if jitter is not None and jitter >= 0:
            self.RETRY.jitter_seconds = jitter

    def _load_anchor_overrides(self) -> None:
        threshold = _env_float("ANCHOR_SIMILARITY_THRESHOLD")
        if threshold is not None and 0.0 <= threshold <= 1.0:
            self.ANCHOR.similarity_threshold = threshold

        window = _env_int("ANCHOR_CONTEXT_WINDOW")
        if window is not None and window >= 0:
            self.ANCHOR.context_window_chars = window

        prefix = os.getenv("ANCHOR_INSTRUCTION_PREFIX")
        if prefix and prefix.strip():
            self.ANCHOR.instruction_prefix = prefix.strip()

        hint_override = os.getenv("ANCHOR_USE_HINT")
        if hint_override:
            self.ANCHOR.use_anchor_hint = hint_override.lower() in TRUTHY_ENV_VALUES

        flag_seconds = _env_float("ANCHOR_CONFLICT_FLAG_SECONDS")
        if flag_seconds is not None and 0.0 <= flag_seconds <= 60.0:
            self.ANCHOR.conflict_flag_seconds = flag_seconds

        flag_color = os.getenv("ANCHOR_CONFLICT_FLAG_COLOR")
        if flag_color:
            self.ANCHOR.conflict_flag_color = flag_color

    def _load_store_overrides(self) -> None:
        self.STORE.base_url = os.getenv("ANNOTATION_STORE_URL", self.STORE.base_url).rstrip("/")
        self.STORE.api_key = os.getenv("ANNOTATION_STORE_API_KEY", self.STORE.api_key)
        self.STORE.document_id = os.getenv("DOCUMENT_ID", self.STORE.document_id)

        connect_timeout = _env_float("ANNOTATION_STORE_CONNECT_TIMEOUT")
        if connect_timeout is not None and connect_timeout > 0:
            self.STORE.connect_timeout = connect_timeout

        read_timeout = _env_float("ANNOTATION_STORE_READ_TIMEOUT")
        if read_timeout is not None and read_timeout > 0:
            self.STORE.read_timeout = read_timeout

        page_size = _env_int("ANNOTATION_STORE_PAGE_SIZE")
        if page_size is not None and 1 <= page_size <= 100:
            self.STORE.page_size = page_size


# Global configuration instance
config = Config()
