"""Config commands for the chunkup CLI.

Commands:
- config show: Print the saved configuration
- config set: Save one configuration value
"""

from __future__ import annotations

import sys

import click

from chunkup.client.cli.config import (
    CONFIG_KEYS,
    INT_KEYS,
    get_config_file,
    load_config,
    save_config,
)


@click.group()
def config() -> None:
    """Show or change saved defaults (~/.chunkup/config.json)."""


@config.command("show")
def show_config() -> None:
    """Print the saved configuration."""
    settings = load_config()
    click.echo(f"Config file: {get_config_file()}")
    if not settings:
        click.echo("No settings saved.")
        return
    for key in sorted(settings):
        value = "********" if key == "token" else settings[key]
        click.echo(f"  {key} = {value}")


@config.command("set")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.argument("value")
def set_config(key: str, value: str) -> None:
    """Save one configuration value."""
    if key in INT_KEYS:
        try:
            number = int(value)
        except ValueError:
            click.echo(f"Error: {key} must be an integer, got {value!r}", err=True)
            sys.exit(1)
        if number < (0 if key == "max_retries" else 1):
            click.echo(f"Error: {key} is out of range: {number}", err=True)
            sys.exit(1)
    if key == "server_url":
        value = value.rstrip("/")

    settings = load_config()
    settings[key] = value
    save_config(settings)
    click.echo(f"Saved {key}.")
