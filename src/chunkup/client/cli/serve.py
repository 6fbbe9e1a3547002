"""Server command for the chunkup CLI.

Commands:
- serve: Run the reference upload server
"""

from __future__ import annotations

import os
from pathlib import Path

import click


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", type=int, default=8000, show_default=True, help="Bind port.")
@click.option(
    "--storage-path",
    type=click.Path(file_okay=False),
    default=None,
    help="Chunk and artifact directory (default: CHUNKUP_STORAGE_PATH or ./storage).",
)
@click.option(
    "--db-path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to database file (default: CHUNKUP_DB_PATH or ./chunkup.db).",
)
@click.option(
    "--token",
    default=None,
    help="Require this bearer token on upload routes (default: CHUNKUP_API_TOKEN).",
)
def serve(
    host: str,
    port: int,
    storage_path: str | None,
    db_path: str | None,
    token: str | None,
) -> None:
    """Run the upload server.

    Examples:

        # Serve ./storage on localhost:8000
        chunkup serve

        # Custom locations, reachable from the network
        chunkup serve --host 0.0.0.0 --storage-path /srv/uploads --db-path /srv/chunkup.db
    """
    import uvicorn

    from chunkup.server.app import (
        LOG_PATH,
        MAX_CHUNK_SIZE,
        create_app,
        setup_logging,
    )
    from chunkup.server.database import Database
    from chunkup.server.storage import LocalMergeStorage

    # Resolve paths from args or environment
    resolved_db_path = Path(db_path or os.environ.get("CHUNKUP_DB_PATH", "chunkup.db"))
    resolved_storage_path = storage_path or os.environ.get("CHUNKUP_STORAGE_PATH", "storage")
    api_token = token or os.environ.get("CHUNKUP_API_TOKEN") or None

    setup_logging(LOG_PATH)

    db = Database(resolved_db_path)
    storage = LocalMergeStorage(resolved_storage_path)
    app = create_app(db, storage, api_token=api_token, max_chunk_size=MAX_CHUNK_SIZE)

    click.echo(f"Serving on http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        db.close()
