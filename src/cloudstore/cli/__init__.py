"""Command-line interface for cloudstore.

This module provides the main CLI entry point and assembles all commands.

Commands:
- ls: List objects under a URI
- upload: Upload a file or directory
- download: Download an object or directory
- cp: Copy objects
- rm: Delete objects
- mv: Rename objects
- keygen: Generate an encryption key pair
- add-key: Grant another key access to an encrypted object
- remove-key: Revoke a key's access to an encrypted object
- pending: Pending multipart upload commands
- config: Show or change the settings in the config file
"""

from __future__ import annotations

import click

from cloudstore.cli.config import (
    build_client_config,
    get_config_dir,
    get_config_file,
    load_config,
    save_config,
    setup_logging,
)
from cloudstore.cli.configure import config
from cloudstore.cli.context import default_client_factory
from cloudstore.cli.keys import add_key, keygen, remove_key
from cloudstore.cli.objects import cp, download, ls, mv, rm, upload
from cloudstore.cli.pending import pending


@click.group()
@click.version_option(package_name="cloudstore")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """cloudstore - Chunked, encrypted transfers for S3 and GCS."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj.setdefault("client_factory", default_client_factory)


# Object commands
cli.add_command(ls)
cli.add_command(upload)
cli.add_command(download)
cli.add_command(cp)
cli.add_command(rm)
cli.add_command(mv)

# Key commands
cli.add_command(keygen)
cli.add_command(add_key)
cli.add_command(remove_key)

# Pending upload commands
cli.add_command(pending)

# Configuration commands
cli.add_command(config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "build_client_config",
    "get_config_dir",
    "get_config_file",
    "load_config",
    "save_config",
]
