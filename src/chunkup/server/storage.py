"""Chunk and artifact storage for the upload server.

This module provides:
- MergeStorage: Abstract interface for temporary chunks and merged artifacts
- LocalMergeStorage: Local filesystem implementation
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from pathlib import Path

logger = logging.getLogger(__name__)

FINGERPRINT_PATTERN = re.compile(r"^[0-9A-Za-z_-]{1,128}$")

CHUNK_SUFFIX = ".chunk"
TEMP_DIR = "temp"
UPLOADS_DIR = "uploads"


class MissingChunkError(Exception):
    """Raised when a merge is requested before every chunk arrived."""

    def __init__(self, index: int) -> None:
        super().__init__(f"Missing chunk {index}")
        self.index = index


def validate_fingerprint(fingerprint: str) -> str:
    """Reject fingerprints that could escape the temp directory.

    Raises:
        ValueError: If the fingerprint has unexpected characters.
    """
    if not FINGERPRINT_PATTERN.match(fingerprint):
        raise ValueError(f"Invalid fingerprint: {fingerprint!r}")
    return fingerprint


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied file name to its final component."""
    name = Path(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return "upload"
    return name


class MergeStorage(ABC):
    """Abstract interface for chunk ingest and merged artifacts."""

    @property
    @abstractmethod
    def location(self) -> str:
        """Return a human-readable description of where data is stored."""

    @abstractmethod
    def locked(self, fingerprint: str) -> AbstractContextManager[object]:
        """Serialize merge decisions for one fingerprint.

        Re-entrant, so merge() may be called while holding it.
        """

    @abstractmethod
    def put_chunk(self, fingerprint: str, index: int, data: bytes) -> None:
        """Store one chunk. Storing the same index again overwrites it.

        Args:
            fingerprint: Content fingerprint of the whole file.
            index: Chunk index.
            data: Chunk bytes.
        """

    @abstractmethod
    def list_chunks(self, fingerprint: str) -> list[int]:
        """Return the stored chunk indices for a fingerprint, ascending."""

    @abstractmethod
    def merge(self, fingerprint: str, filename: str, total_chunks: int) -> tuple[str, int]:
        """Concatenate chunks ``0..total_chunks-1`` into the final artifact.

        Args:
            fingerprint: Content fingerprint.
            filename: Original file name.
            total_chunks: Number of chunks to assemble.

        Returns:
            Tuple of (artifact path relative to the storage root, size).

        Raises:
            MissingChunkError: If any chunk is absent. Nothing is written.
        """

    @abstractmethod
    def artifact_exists(self, path: str) -> bool:
        """Check whether a merged artifact is still present."""

    @abstractmethod
    def discard(self, fingerprint: str) -> bool:
        """Delete the temporary chunks of a fingerprint.

        Returns:
            True if anything was deleted.
        """


class LocalMergeStorage(MergeStorage):
    """Local filesystem storage.

    Layout::

        <base>/temp/<fingerprint>/<index>.chunk
        <base>/uploads/<fingerprint>_<filename>
    """

    def __init__(self, base_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for chunks and artifacts.
        """
        self._base_path = Path(base_path).resolve()
        self._temp_path = self._base_path / TEMP_DIR
        self._uploads_path = self._base_path / UPLOADS_DIR
        self._temp_path.mkdir(parents=True, exist_ok=True)
        self._uploads_path.mkdir(parents=True, exist_ok=True)

        self._locks: dict[str, threading.RLock] = {}
        self._locks_lock = threading.Lock()

    @property
    def location(self) -> str:
        """Return the local storage path."""
        return f"Local filesystem: {self._base_path}"

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _chunk_dir(self, fingerprint: str) -> Path:
        return self._temp_path / validate_fingerprint(fingerprint)

    def _chunk_path(self, fingerprint: str, index: int) -> Path:
        return self._chunk_dir(fingerprint) / f"{index}{CHUNK_SUFFIX}"

    def locked(self, fingerprint: str) -> threading.RLock:
        """Per-fingerprint re-entrant lock."""
        with self._locks_lock:
            return self._locks.setdefault(fingerprint, threading.RLock())

    def put_chunk(self, fingerprint: str, index: int, data: bytes) -> None:
        """Store one chunk atomically (write to a temp name, then rename)."""
        if index < 0:
            raise ValueError(f"Chunk index must not be negative, got {index}")
        path = self._chunk_path(fingerprint, index)
        path.parent.mkdir(exist_ok=True)
        partial = path.with_name(f"{path.name}.{threading.get_ident()}.part")
        partial.write_bytes(data)
        os.replace(partial, path)

    def list_chunks(self, fingerprint: str) -> list[int]:
        """Return the stored chunk indices for a fingerprint, ascending."""
        chunk_dir = self._chunk_dir(fingerprint)
        if not chunk_dir.is_dir():
            return []
        indices = []
        for entry in chunk_dir.iterdir():
            stem = entry.name.removesuffix(CHUNK_SUFFIX)
            if entry.name.endswith(CHUNK_SUFFIX) and stem.isdigit():
                indices.append(int(stem))
        return sorted(indices)

    def merge(self, fingerprint: str, filename: str, total_chunks: int) -> tuple[str, int]:
        """Concatenate the chunks in index order and drop the temp directory."""
        name = f"{validate_fingerprint(fingerprint)}_{safe_filename(filename)}"
        final_path = self._uploads_path / name
        relative = f"{UPLOADS_DIR}/{name}"

        with self.locked(fingerprint):
            for i in range(total_chunks):
                if not self._chunk_path(fingerprint, i).is_file():
                    raise MissingChunkError(i)

            partial = final_path.with_name(f"{final_path.name}.part")
            with open(partial, "wb") as out:
                for i in range(total_chunks):
                    with open(self._chunk_path(fingerprint, i), "rb") as chunk:
                        shutil.copyfileobj(chunk, out)
            os.replace(partial, final_path)
            self.discard(fingerprint)

        size = final_path.stat().st_size
        logger.info(f"Merged {total_chunks} chunks into {relative} ({size} bytes)")
        return relative, size

    def artifact_exists(self, path: str) -> bool:
        """Check whether a merged artifact is still present."""
        return (self._base_path / path).is_file()

    def discard(self, fingerprint: str) -> bool:
        """Delete the temporary chunks of a fingerprint."""
        chunk_dir = self._chunk_dir(fingerprint)
        if not chunk_dir.exists():
            return False
        shutil.rmtree(chunk_dir)
        return True


def create_storage(config: dict[str, str | None]) -> MergeStorage:
    """Create storage from configuration.

    Args:
        config: Storage configuration with 'type' and type-specific options.
            For 'local': {'type': 'local', 'local_path': '/path/to/storage'}

    Returns:
        Configured MergeStorage instance.

    Raises:
        ValueError: If storage type is unknown.
    """
    storage_type = config.get("type", "local")

    if storage_type == "local":
        return LocalMergeStorage(config.get("local_path") or "storage")

    raise ValueError(f"Unknown storage type: {storage_type}")
