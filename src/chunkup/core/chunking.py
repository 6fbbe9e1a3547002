"""Fixed-size chunking for chunkup.

This module provides:
- FileSource: Immutable handle to a file's bytes and length
- LocalFileSource / MemorySource: Concrete sources (disk file, in-memory bytes)
- count_chunks / chunk_range: Chunk arithmetic shared by client and server
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Chunk:
    """Represents a chunk of data with its position in the file."""

    index: int
    offset: int
    data: bytes

    @property
    def size(self) -> int:
        """Return the size of this chunk in bytes."""
        return len(self.data)


def count_chunks(size: int, chunk_size: int) -> int:
    """Number of chunks needed to cover ``size`` bytes.

    An empty file has zero chunks.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return math.ceil(size / chunk_size)


def chunk_range(index: int, chunk_size: int, size: int) -> tuple[int, int]:
    """Byte range ``[start, end)`` of chunk ``index``.

    Args:
        index: Chunk index.
        chunk_size: Size of a full chunk in bytes.
        size: Total file size in bytes.

    Returns:
        Tuple of (start, end) offsets.

    Raises:
        IndexError: If the index is outside the file.
    """
    total = count_chunks(size, chunk_size)
    if index < 0 or index >= total:
        raise IndexError(f"Chunk index {index} out of range [0, {total})")
    start = index * chunk_size
    return start, min(start + chunk_size, size)


class FileSource(ABC):
    """Immutable handle to a file's bytes and length."""

    @property
    @abstractmethod
    def name(self) -> str:
        """File name reported to the server."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Size in bytes, fixed when the source is created."""

    @abstractmethod
    def read_range(self, start: int, end: int) -> bytes:
        """Read bytes ``[start, end)``."""

    def read_chunk(self, index: int, chunk_size: int) -> Chunk:
        """Slice chunk ``index`` out of the source."""
        start, end = chunk_range(index, chunk_size, self.size)
        return Chunk(index=index, offset=start, data=self.read_range(start, end))

    def iter_windows(self, window: int) -> Iterator[bytes]:
        """Yield the content in consecutive ``window``-sized reads."""
        offset = 0
        while offset < self.size:
            end = min(offset + window, self.size)
            yield self.read_range(offset, end)
            offset = end


@dataclass(frozen=True)
class LocalFileSource(FileSource):
    """A file on the local filesystem.

    The size is captured at creation; reads past it are never issued.
    """

    path: Path
    file_size: int = field(default=-1)

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))
        if self.file_size < 0:
            if not self.path.is_file():
                raise FileNotFoundError(f"File not found: {self.path}")
            object.__setattr__(self, "file_size", self.path.stat().st_size)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.file_size

    def read_range(self, start: int, end: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(start)
            data = f.read(end - start)
        if len(data) != end - start:
            raise OSError(
                f"Short read on {self.path}: expected {end - start} bytes, got {len(data)}"
            )
        return data

    def iter_windows(self, window: int) -> Iterator[bytes]:
        # Single open handle for sequential reads
        remaining = self.size
        with open(self.path, "rb") as f:
            while remaining > 0:
                block = f.read(min(window, remaining))
                if not block:
                    break
                remaining -= len(block)
                yield block


@dataclass(frozen=True)
class MemorySource(FileSource):
    """In-memory bytes, mostly useful for tests and generated content."""

    filename: str
    data: bytes = field(repr=False)

    @property
    def name(self) -> str:
        return self.filename

    @property
    def size(self) -> int:
        return len(self.data)

    def read_range(self, start: int, end: int) -> bytes:
        return self.data[start:end]
