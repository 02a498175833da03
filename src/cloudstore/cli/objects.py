"""Object and directory commands for the cloudstore CLI.

Commands:
- ls: List objects under a URI
- upload: Upload a file or directory
- download: Download an object or directory
- cp: Copy objects
- rm: Delete objects
- mv: Rename objects
"""

from __future__ import annotations

from pathlib import Path

import click

from cloudstore.cli.context import open_client, parse_uris, run_command
from cloudstore.core.config import TransferOptions
from cloudstore.core.types import ObjectDescriptor
from cloudstore.progress import LoggingProgressListenerFactory

recursive_option = click.option(
    "--recursive", "-r", is_flag=True, help="Operate on every object under the prefix."
)
dry_run_option = click.option(
    "--dry-run", is_flag=True, help="Show what would be done without changing anything."
)
acl_option = click.option("--acl", "canned_acl", default=None, help="Canned ACL for new objects.")


def _print_descriptors(
    descriptors: list[ObjectDescriptor] | ObjectDescriptor | None, scheme: str
) -> None:
    if descriptors is None:
        return
    if isinstance(descriptors, ObjectDescriptor):
        descriptors = [descriptors]
    for descriptor in descriptors:
        click.echo(descriptor.ref.uri(scheme))


@click.command("ls")
@click.argument("url")
@recursive_option
def ls(url: str, recursive: bool) -> None:
    """List objects and directories under URL."""
    ctx = click.get_current_context()

    def action() -> None:
        scheme, [(bucket, prefix)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            entries = client.list_objects(bucket, prefix, recursive=recursive).result()
        for entry in entries:
            if entry.is_directory:
                click.echo(f"{'DIR':>12}  {entry.ref.uri(scheme)}")
            else:
                click.echo(f"{entry.size:>12}  {entry.ref.uri(scheme)}")

    run_command(action)


@click.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.argument("url")
@recursive_option
@click.option("--key", "key_name", default=None, help="Encrypt under this key name.")
@click.option("--chunk-size", type=int, default=None, help="Chunk size in bytes.")
@acl_option
@dry_run_option
def upload(
    path: Path,
    url: str,
    recursive: bool,
    key_name: str | None,
    chunk_size: int | None,
    canned_acl: str | None,
    dry_run: bool,
) -> None:
    """Upload PATH to URL.

    A URL ending in "/" receives the file under its own name.
    """
    ctx = click.get_current_context()
    options = TransferOptions(
        recursive=recursive,
        dry_run=dry_run,
        canned_acl=canned_acl,
        encryption_key_name=key_name,
        chunk_size=chunk_size,
        progress=LoggingProgressListenerFactory(),
    )

    def action() -> None:
        scheme, [(bucket, key)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            if recursive:
                result = client.upload_directory(path, bucket, key, options).result()
            else:
                if not key or key.endswith("/"):
                    key = key + path.name
                result = client.upload(path, bucket, key, options).result()
        _print_descriptors(result, scheme)

    run_command(action)


@click.command()
@click.argument("url")
@click.argument("path", type=click.Path(path_type=Path))
@recursive_option
@click.option("--overwrite", is_flag=True, help="Replace existing local files.")
@dry_run_option
def download(url: str, path: Path, recursive: bool, overwrite: bool, dry_run: bool) -> None:
    """Download URL to PATH."""
    ctx = click.get_current_context()
    options = TransferOptions(
        recursive=recursive,
        overwrite=overwrite,
        dry_run=dry_run,
        progress=LoggingProgressListenerFactory(),
    )

    def action() -> None:
        scheme, [(bucket, key)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            if recursive:
                result = client.download_directory(bucket, key, path, options).result()
            else:
                result = client.download(bucket, key, path, options).result()
        _print_descriptors(result, scheme)

    run_command(action)


@click.command("cp")
@click.argument("src")
@click.argument("dst")
@recursive_option
@acl_option
@dry_run_option
def cp(src: str, dst: str, recursive: bool, canned_acl: str | None, dry_run: bool) -> None:
    """Copy SRC to DST within the same storage service."""
    ctx = click.get_current_context()
    options = TransferOptions(recursive=recursive, dry_run=dry_run, canned_acl=canned_acl)

    def action() -> None:
        scheme, [(src_bucket, src_key), (dst_bucket, dst_key)] = parse_uris(src, dst)
        with open_client(ctx, scheme) as client:
            if recursive:
                result = client.copy_directory(
                    src_bucket, src_key, dst_bucket, dst_key, options
                ).result()
            else:
                result = client.copy(src_bucket, src_key, dst_bucket, dst_key, options).result()
        _print_descriptors(result, scheme)

    run_command(action)


@click.command("rm")
@click.argument("url")
@recursive_option
@dry_run_option
def rm(url: str, recursive: bool, dry_run: bool) -> None:
    """Delete URL."""
    ctx = click.get_current_context()
    options = TransferOptions(recursive=recursive, dry_run=dry_run)

    def action() -> None:
        scheme, [(bucket, key)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            if recursive:
                client.delete_directory(bucket, key, options).result()
            else:
                client.delete(bucket, key, options).result()

    run_command(action)


@click.command("mv")
@click.argument("src")
@click.argument("dst")
@recursive_option
@acl_option
@dry_run_option
def mv(src: str, dst: str, recursive: bool, canned_acl: str | None, dry_run: bool) -> None:
    """Rename SRC to DST. Never overwrites an existing destination."""
    ctx = click.get_current_context()
    options = TransferOptions(recursive=recursive, dry_run=dry_run, canned_acl=canned_acl)

    def action() -> None:
        scheme, [(src_bucket, src_key), (dst_bucket, dst_key)] = parse_uris(src, dst)
        with open_client(ctx, scheme) as client:
            if recursive:
                result = client.rename_directory(
                    src_bucket, src_key, dst_bucket, dst_key, options
                ).result()
            else:
                result = client.rename(src_bucket, src_key, dst_bucket, dst_key, options).result()
        _print_descriptors(result, scheme)

    run_command(action)
