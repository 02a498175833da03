"""Encryption key commands for the cloudstore CLI.

Commands:
- keygen: Generate a new RSA key pair in the key directory
- add-key: Grant another key access to an encrypted object
- remove-key: Revoke a key's access to an encrypted object
"""

from __future__ import annotations

import click

from cloudstore.cli.config import build_client_config
from cloudstore.cli.context import open_client, parse_uris, run_command
from cloudstore.core.config import TransferOptions
from cloudstore.core.crypto import DEFAULT_RSA_BITS, generate_keypair
from cloudstore.keys import write_keypair


@click.command()
@click.argument("name")
@click.option(
    "--bits",
    type=click.Choice(["2048", "3072", "4096"]),
    default=str(DEFAULT_RSA_BITS),
    show_default=True,
    help="RSA key size.",
)
def keygen(name: str, bits: str) -> None:
    """Generate key pair NAME in the configured key directory.

    The file holds both the public and the private key. Copy only the
    public part to machines that should encrypt but not decrypt.
    """

    def action() -> None:
        key_dir = build_client_config("s3").key_dir
        path = write_keypair(key_dir, name, generate_keypair(int(bits)))
        click.echo(f"Key pair '{name}' written to {path}")

    run_command(action)


@click.command("add-key")
@click.argument("url")
@click.argument("name")
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything.")
def add_key(url: str, name: str, dry_run: bool) -> None:
    """Wrap the object key of encrypted URL under key NAME as well."""
    ctx = click.get_current_context()

    def action() -> None:
        scheme, [(bucket, key)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            client.add_encryption_key(bucket, key, name, TransferOptions(dry_run=dry_run)).result()
        if not dry_run:
            click.echo(f"Added key '{name}' to {url}")

    run_command(action)


@click.command("remove-key")
@click.argument("url")
@click.argument("name")
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything.")
def remove_key(url: str, name: str, dry_run: bool) -> None:
    """Remove key NAME from encrypted URL. The last key cannot be removed."""
    ctx = click.get_current_context()

    def action() -> None:
        scheme, [(bucket, key)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            client.remove_encryption_key(
                bucket, key, name, TransferOptions(dry_run=dry_run)
            ).result()
        if not dry_run:
            click.echo(f"Removed key '{name}' from {url}")

    run_command(action)
