"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from pydantic import BaseModel, Field

# === Health ===


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# === Upload schemas ===


class CheckRequest(BaseModel):
    """Request body for the existence/resume check."""

    fingerprint: str
    filename: str


class CheckResponse(BaseModel):
    """Whether the content is already stored, or which chunks are."""

    exists: bool
    path: str | None = None
    uploaded_chunks: list[int] = Field(default_factory=list)


class ChunkResponse(BaseModel):
    """Response for a stored chunk."""

    success: bool
    index: int


class MergeRequest(BaseModel):
    """Request body for assembling the chunks."""

    fingerprint: str
    filename: str
    total_chunks: int = Field(ge=0)


class MergeResponse(BaseModel):
    """Response for a completed merge."""

    success: bool
    path: str
