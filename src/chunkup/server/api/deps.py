"""FastAPI dependencies for API routes."""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chunkup.server.database import Database
from chunkup.server.storage import MergeStorage

# Security scheme
security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Database:
    """Get database from app state."""
    db: Database = request.app.state.db
    return db


def get_storage(request: Request) -> MergeStorage:
    """Get merge storage from app state."""
    storage: MergeStorage = request.app.state.storage
    return storage


def get_max_chunk_size(request: Request) -> int:
    """Largest accepted chunk body in bytes."""
    max_chunk_size: int = request.app.state.max_chunk_size
    return max_chunk_size


def require_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    """Enforce the bearer token when the server was started with one."""
    expected: str | None = request.app.state.api_token
    if not expected:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
