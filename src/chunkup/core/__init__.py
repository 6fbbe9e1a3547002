"""Core module - Shared chunking, fingerprinting, and configuration."""

from chunkup.core.chunking import (
    Chunk,
    FileSource,
    LocalFileSource,
    MemorySource,
    chunk_range,
    count_chunks,
)
from chunkup.core.config import (
    DEFAULT_CHUNK_SIZE,
    ServerConfig,
    UploaderConfig,
)
from chunkup.core.fingerprint import FingerprintProvider, hash_source

__all__ = [
    # Chunking
    "Chunk",
    "FileSource",
    "LocalFileSource",
    "MemorySource",
    "chunk_range",
    "count_chunks",
    # Config
    "DEFAULT_CHUNK_SIZE",
    "ServerConfig",
    "UploaderConfig",
    # Fingerprints
    "FingerprintProvider",
    "hash_source",
]
