"""
Entrypoint for the Anchor Edit service.
This file wires the FastAPI application together: logging, the document
surface, the annotation store, the engine and the anchor edit routes.
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from fastapi import FastAPI

from anchor_edit import (
    AnnotationStore,
    DocumentSurface,
    InMemoryDocument,
    SafeApplyEngine,
    create_store,
)
from anchor_edit.router import router as anchor_edit_router
from config import config

# Setup logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)

# Silence noisy third-party loggers to avoid cluttering output
_noisy_loggers = [
    'urllib3',
    'urllib3.connectionpool',
    'httpx',
    'httpcore',
]
for _logger_name in _noisy_loggers:
    logging.getLogger(_logger_name).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(
    document: Optional[DocumentSurface] = None,
    store: Optional[AnnotationStore] = None,
    engine: Optional[SafeApplyEngine] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Without arguments the service edits an in-memory document and uses the
    store configured by ANNOTATION_STORE_URL (in-memory when unset).
    """
    app = FastAPI(
        title="Anchor Edit Engine",
        description="Anchor resolution and safe-apply API for anchored edit requests",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    if engine is None:
        engine = SafeApplyEngine(
            document if document is not None else InMemoryDocument(),
            store if store is not None else create_store(config.STORE),
            anchor_settings=config.ANCHOR,
            retry_settings=config.RETRY,
            verbose=config.LOG_LEVEL == "DEBUG",
        )
    app.state.engine = engine

    app.include_router(anchor_edit_router, prefix="/anchor-edit")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    parser = argparse.ArgumentParser(description="Anchor Edit Engine")
    parser.add_argument("--host", default=config.APP_HOST, help="Bind host")
    parser.add_argument("--port", type=int, default=config.APP_PORT, help="Bind port")
    parser.add_argument(
        "--reload",
        action="store_true",
        default=config.APP_RELOAD,
        help="Enable auto-reload (development only)",
    )
    args = parser.parse_args()

    logger.info("Starting Anchor Edit service on %s:%d", args.host, args.port)
    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
