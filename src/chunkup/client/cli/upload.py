"""Upload command for the chunkup CLI.

Commands:
- upload: Upload one or more files to a chunkup server
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import click

from chunkup.client.api import HTTPClient
from chunkup.client.cli.config import get_int_setting, load_config
from chunkup.client.upload import FileStatus, TaskSnapshot, UploadOrchestrator
from chunkup.core.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONCURRENT_CHUNKS,
    DEFAULT_CONCURRENT_FILES,
    DEFAULT_MAX_RETRIES,
    ServerConfig,
    UploaderConfig,
)
from chunkup.core.fingerprint import FingerprintProvider

STATUS_MARKS = {
    FileStatus.SUCCESS: "done",
    FileStatus.ERROR: "FAILED",
    FileStatus.CANCELLED: "cancelled",
}


def _format_status(snapshot: TaskSnapshot) -> str:
    line = f"[{snapshot.progress:3d}%] {snapshot.name}: {snapshot.status.value}"
    if snapshot.status == FileStatus.UPLOADING:
        line += f" ({len(snapshot.uploaded_chunks)}/{snapshot.total_chunks} chunks)"
    if snapshot.error:
        line += f" - {snapshot.error}"
    return line


@click.command()
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--server", "server_url", default=None, help="Server URL (default: saved config).")
@click.option("--token", default=None, help="Bearer token (default: saved config).")
@click.option("--chunk-size", type=int, default=None, help="Chunk size in bytes.")
@click.option("--concurrent-files", type=int, default=None, help="Files uploaded at once.")
@click.option("--concurrent-chunks", type=int, default=None, help="Chunks per file at once.")
@click.option("--max-retries", type=int, default=None, help="Retries per chunk.")
@click.option(
    "--no-process-hashing",
    is_flag=True,
    help="Compute fingerprints in-thread instead of on a process pool.",
)
def upload(
    files: tuple[Path, ...],
    server_url: str | None,
    token: str | None,
    chunk_size: int | None,
    concurrent_files: int | None,
    concurrent_chunks: int | None,
    max_retries: int | None,
    no_process_hashing: bool,
) -> None:
    """Upload FILES in chunks, resuming partial uploads.

    Files the server already holds complete instantly. Exits with status 1
    if any file fails.
    """
    config = load_config()

    server_url = server_url or config.get("server_url")
    if not server_url:
        click.echo(
            "Error: No server configured. Use --server or "
            "'chunkup config set server_url URL'.",
            err=True,
        )
        sys.exit(1)

    try:
        uploader_config = UploaderConfig(
            chunk_size=chunk_size or get_int_setting(config, "chunk_size", DEFAULT_CHUNK_SIZE),
            concurrent_files=concurrent_files
            or get_int_setting(config, "concurrent_files", DEFAULT_CONCURRENT_FILES),
            concurrent_chunks=concurrent_chunks
            or get_int_setting(config, "concurrent_chunks", DEFAULT_CONCURRENT_CHUNKS),
            max_retries=max_retries
            if max_retries is not None
            else get_int_setting(config, "max_retries", DEFAULT_MAX_RETRIES),
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    server_config = ServerConfig(server_url=server_url, token=token or config.get("token"))
    output_lock = threading.Lock()

    def on_status(snapshot: TaskSnapshot) -> None:
        with output_lock:
            click.echo(_format_status(snapshot))

    fingerprints = FingerprintProvider(
        window=uploader_config.chunk_size,
        use_processes=not no_process_hashing,
    )
    snapshots: list[TaskSnapshot] = []

    with HTTPClient(server_config) as client:
        if not client.health_check():
            click.echo(f"Error: Server not reachable at {server_config.server_url}", err=True)
            sys.exit(1)

        orchestrator = UploadOrchestrator(
            client,
            uploader_config,
            on_status=on_status,
            fingerprints=fingerprints,
        )
        tasks = []
        try:
            tasks = orchestrator.add_files(files)
            orchestrator.wait()
        except KeyboardInterrupt:
            click.echo("\nInterrupted, cancelling uploads...", err=True)
        finally:
            orchestrator.destroy()
            fingerprints.shutdown()
            snapshots = [task.snapshot() for task in tasks]

    click.echo("")
    for snapshot in snapshots:
        mark = STATUS_MARKS.get(snapshot.status, snapshot.status.value)
        detail = snapshot.path or snapshot.error or ""
        click.echo(f"{mark:>9}  {snapshot.name}  {detail}".rstrip())

    unfinished = [s for s in snapshots if s.status != FileStatus.SUCCESS]
    if unfinished:
        click.echo(
            f"{len(snapshots) - len(unfinished)}/{len(snapshots)} files uploaded.",
            err=True,
        )
        sys.exit(1)
    click.echo(f"All {len(snapshots)} files uploaded.")
