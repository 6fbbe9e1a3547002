"""Command-line interface for chunkup.

This module provides the main CLI entry point and assembles all commands.

Commands:
- upload: Upload files to a chunkup server
- serve: Run the reference upload server
- config: Show or change saved defaults
"""

from __future__ import annotations

import click

from chunkup.client.cli.config import (
    configure_cli_logging,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
)
from chunkup.client.cli.serve import serve
from chunkup.client.cli.settings import config
from chunkup.client.cli.upload import upload


@click.group()
@click.version_option(package_name="chunkup")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """chunkup - Chunked, resumable file uploads."""
    configure_cli_logging(verbose)


# Upload commands
cli.add_command(upload)

# Server commands
cli.add_command(serve)

# Config commands
cli.add_command(config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
