"""Server database using SQLAlchemy with SQLite.

This module provides:
- The durable fingerprint -> artifact index used for instant transfer
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from chunkup.server.models import Base, StoredFile

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class Database:
    """SQLAlchemy database for the dedup index.

    Uses SQLite with WAL mode for better concurrency with multiple readers.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # check_same_thread=False: FastAPI runs sync routes on a thread pool
        self._engine: Engine = create_engine(
            f"sqlite:///{self._db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )

        with self._engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")

        Base.metadata.create_all(self._engine)

    @property
    def path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        self._engine.dispose()

    def _session(self) -> Session:
        """Create a new database session."""
        return Session(self._engine)

    # === Dedup index ===

    def get_stored_file(self, fingerprint: str) -> StoredFile | None:
        """Look up a merged file by fingerprint.

        Args:
            fingerprint: Content fingerprint.

        Returns:
            StoredFile if the content was merged before, None otherwise.
        """
        with self._session() as session:
            stored = session.get(StoredFile, fingerprint)
            if stored:
                session.expunge(stored)
            return stored

    def record_stored_file(
        self, fingerprint: str, filename: str, path: str, size: int
    ) -> StoredFile:
        """Record a merged file. Recording a known fingerprint keeps the first entry.

        Args:
            fingerprint: Content fingerprint.
            filename: Original file name.
            path: Server-side path of the merged artifact.
            size: Artifact size in bytes.

        Returns:
            The indexed StoredFile.
        """
        with self._session() as session:
            existing = session.get(StoredFile, fingerprint)
            if existing is not None:
                session.expunge(existing)
                return existing

            stored = StoredFile(
                fingerprint=fingerprint, filename=filename, path=path, size=size
            )
            session.add(stored)
            session.commit()
            session.refresh(stored)
            session.expunge(stored)
            logger.info(f"Indexed {fingerprint[:8]}... -> {path}")
            return stored

    def delete_stored_file(self, fingerprint: str) -> bool:
        """Drop an index entry (e.g. when its artifact disappeared).

        Returns:
            True if an entry was removed.
        """
        with self._session() as session:
            stored = session.get(StoredFile, fingerprint)
            if stored is None:
                return False
            session.delete(stored)
            session.commit()
            return True

    def count_stored_files(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(StoredFile)) or 0
