"""Configuration utilities for the chunkup CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

# Keys accepted by `chunkup config set`
CONFIG_KEYS = (
    "server_url",
    "token",
    "chunk_size",
    "concurrent_files",
    "concurrent_chunks",
    "max_retries",
)
INT_KEYS = frozenset({"chunk_size", "concurrent_files", "concurrent_chunks", "max_retries"})


def get_config_dir() -> Path:
    """Get the configuration directory for chunkup.

    Returns:
        Path to ~/.chunkup or equivalent.
    """
    return Path.home() / ".chunkup"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def get_int_setting(config: dict[str, str], key: str, default: int) -> int:
    """Read an integer setting, falling back to ``default`` when unset.

    Raises:
        click.BadParameter: If the stored value is not an integer.
    """
    value = config.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise click.BadParameter(
            f"config value {key}={value!r} is not an integer", param_hint=key
        ) from e


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes through click.echo to stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_cli_logging(verbose: bool) -> None:
    """Route chunkup logs to stderr: warnings by default, everything with --verbose."""
    level = logging.DEBUG if verbose else logging.WARNING
    handler = ClickEchoHandler()
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            if verbose
            else "%(levelname)s: %(message)s"
        )
    )

    chunkup_logger = logging.getLogger("chunkup")
    for existing in chunkup_logger.handlers[:]:
        chunkup_logger.removeHandler(existing)
    chunkup_logger.addHandler(handler)
    chunkup_logger.setLevel(level)
    chunkup_logger.propagate = False
