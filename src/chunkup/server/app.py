"""FastAPI application for the chunkup server.

This module creates and configures the FastAPI application with:
- Health endpoint
- Chunked upload API (check, chunk, merge)

Usage:
    uvicorn chunkup.server.app:app_factory --factory --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from chunkup.server.api.router import router as api_router
from chunkup.server.database import Database
from chunkup.server.storage import MergeStorage, create_storage

# Configuration from environment variables with defaults
DB_PATH = Path(os.environ.get("CHUNKUP_DB_PATH", "chunkup.db"))
LOG_PATH = Path(os.environ.get("CHUNKUP_LOG_PATH", "chunkup-server.log"))
STORAGE_PATH = os.environ.get("CHUNKUP_STORAGE_PATH", "storage")
API_TOKEN = os.environ.get("CHUNKUP_API_TOKEN") or None

DEFAULT_MAX_CHUNK_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_CHUNK_SIZE = int(os.environ.get("CHUNKUP_MAX_CHUNK_SIZE", DEFAULT_MAX_CHUNK_SIZE))

logger = logging.getLogger(__name__)


def setup_logging(log_path: Path | None = LOG_PATH, level: int = logging.INFO) -> None:
    """Configure logging to output to both file and stdout.

    Args:
        log_path: Path to the log file (None logs to stdout only).
        level: Level for the chunkup logger.
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Root logger for chunkup
    root_logger = logging.getLogger("chunkup")
    root_logger.setLevel(level)
    if root_logger.handlers:
        return

    # Stdout handler
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_path is None:
        return

    # File handler
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Also capture uvicorn logs to file
    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.addHandler(file_handler)


def create_app(
    db: Database,
    storage: MergeStorage,
    api_token: str | None = None,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
) -> FastAPI:
    """Create FastAPI application with custom database and storage.

    This is primarily used for testing with isolated databases.

    Args:
        db: Database instance holding the dedup index.
        storage: Storage for chunks and merged artifacts.
        api_token: Bearer token required on upload routes (None disables auth).
        max_chunk_size: Largest accepted chunk in bytes.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        # Startup
        logger.info("=" * 60)
        logger.info("chunkup Server Starting")
        logger.info("=" * 60)
        logger.info("  Database: %s", db.path)
        logger.info("  Storage:  %s", storage.location)
        logger.info("  Auth:     %s", "bearer token" if api_token else "disabled")
        logger.info("  Indexed:  %d files", db.count_stored_files())
        logger.info("=" * 60)

        yield

        # Shutdown
        logger.info("chunkup Server shutting down")

    application = FastAPI(
        title="chunkup Server",
        description="Chunked, resumable upload server with content dedup",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.state.db = db
    application.state.storage = storage
    application.state.api_token = api_token
    application.state.max_chunk_size = max_chunk_size

    application.include_router(api_router)

    return application


def app_factory() -> FastAPI:
    """Factory function for uvicorn --factory mode."""
    setup_logging(LOG_PATH)
    return create_app(
        db=Database(DB_PATH),
        storage=create_storage({"type": "local", "local_path": STORAGE_PATH}),
        api_token=API_TOKEN,
        max_chunk_size=MAX_CHUNK_SIZE,
    )
