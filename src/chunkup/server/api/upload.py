"""Chunked upload API routes: check, chunk ingest, merge."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from chunkup.server.api.deps import get_db, get_max_chunk_size, get_storage, require_token
from chunkup.server.database import Database
from chunkup.server.schemas import (
    CheckRequest,
    CheckResponse,
    ChunkResponse,
    MergeRequest,
    MergeResponse,
)
from chunkup.server.storage import MergeStorage, MissingChunkError, validate_fingerprint

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/upload",
    tags=["upload"],
    dependencies=[Depends(require_token)],
)


def _checked_fingerprint(fingerprint: str) -> str:
    try:
        return validate_fingerprint(fingerprint)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e


def _indexed_path(db: Database, storage: MergeStorage, fingerprint: str) -> str | None:
    """Path of an already merged artifact, dropping stale index entries."""
    stored = db.get_stored_file(fingerprint)
    if stored is None:
        return None
    if not storage.artifact_exists(stored.path):
        logger.warning(f"Indexed artifact {stored.path} is gone, dropping index entry")
        db.delete_stored_file(fingerprint)
        return None
    return stored.path


@router.post("/check", response_model=CheckResponse)
def check_upload(
    request: CheckRequest,
    db: Database = Depends(get_db),
    storage: MergeStorage = Depends(get_storage),
) -> CheckResponse:
    """Report whether the content exists, or which chunks are already stored."""
    fingerprint = _checked_fingerprint(request.fingerprint)

    path = _indexed_path(db, storage, fingerprint)
    if path is not None:
        logger.info(f"Instant transfer for {request.filename} ({fingerprint[:8]}...)")
        return CheckResponse(exists=True, path=path, uploaded_chunks=[])

    uploaded = storage.list_chunks(fingerprint)
    if uploaded:
        logger.info(f"Resume for {request.filename}: {len(uploaded)} chunks stored")
    return CheckResponse(exists=False, uploaded_chunks=uploaded)


@router.post("/chunk", response_model=ChunkResponse)
async def upload_chunk(
    fingerprint: str = Form(...),
    chunk_index: int = Form(..., ge=0),
    total_chunks: int = Form(..., ge=1),
    file: UploadFile = File(...),
    storage: MergeStorage = Depends(get_storage),
    max_chunk_size: int = Depends(get_max_chunk_size),
) -> ChunkResponse:
    """Store one chunk. Re-sending an index overwrites it."""
    fingerprint = _checked_fingerprint(fingerprint)
    if chunk_index >= total_chunks:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Chunk index {chunk_index} out of range [0, {total_chunks})",
        )

    data = await file.read()
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty chunk data",
        )
    if len(data) > max_chunk_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Chunk exceeds {max_chunk_size} bytes",
        )

    storage.put_chunk(fingerprint, chunk_index, data)
    logger.debug(f"Stored chunk {chunk_index}/{total_chunks} for {fingerprint[:8]}...")
    return ChunkResponse(success=True, index=chunk_index)


@router.post("/merge", response_model=MergeResponse)
def merge_upload(
    request: MergeRequest,
    db: Database = Depends(get_db),
    storage: MergeStorage = Depends(get_storage),
) -> MergeResponse:
    """Assemble the chunks into the final artifact and index it."""
    fingerprint = _checked_fingerprint(request.fingerprint)

    # Concurrent merges of the same content must see each other's index entry
    with storage.locked(fingerprint):
        path = _indexed_path(db, storage, fingerprint)
        if path is not None:
            storage.discard(fingerprint)
            return MergeResponse(success=True, path=path)

        try:
            path, size = storage.merge(fingerprint, request.filename, request.total_chunks)
        except MissingChunkError as e:
            logger.warning(f"Merge of {request.filename} rejected: {e}")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(e),
            ) from e

        stored = db.record_stored_file(fingerprint, request.filename, path, size)
    return MergeResponse(success=True, path=stored.path)
