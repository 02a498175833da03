"""Helpers shared by cloudstore CLI commands.

This module provides:
- default_client_factory: Builds a client for a URI scheme from the config
- open_client: Client for a set of URIs (all must share one scheme)
- run_command: Error reporting wrapper ("Error: ..." and exit code 1)
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import click

from cloudstore.cli.config import build_client_config
from cloudstore.client import CloudStoreClient, create_client
from cloudstore.core.errors import CloudStoreError, PartialTreeFailure, UsageError
from cloudstore.core.uri import parse_uri

ClientFactory = Callable[[str], CloudStoreClient]


def default_client_factory(scheme: str) -> CloudStoreClient:
    """Create a client for ``scheme`` from the config file and environment."""
    return create_client(build_client_config(scheme))


def parse_uris(*uris: str) -> tuple[str, list[tuple[str, str]]]:
    """Parse URIs sharing one scheme.

    Returns:
        Tuple of (scheme, [(bucket, key), ...]).

    Raises:
        UsageError: If a URI is invalid or the schemes differ.
    """
    parsed = [parse_uri(uri) for uri in uris]
    schemes = {scheme for scheme, _, _ in parsed}
    if len(schemes) != 1:
        raise UsageError(f"All URIs must use the same scheme, got: {', '.join(sorted(schemes))}")
    return parsed[0][0], [(bucket, key) for _, bucket, key in parsed]


@contextmanager
def open_client(ctx: click.Context, scheme: str) -> Iterator[CloudStoreClient]:
    """Client for ``scheme``, shut down on exit."""
    factory: ClientFactory = ctx.obj["client_factory"]
    client = factory(scheme)
    try:
        yield client
    finally:
        client.shutdown()


def report_failure(error: CloudStoreError) -> None:
    """Print an error, listing failed entries of a tree operation."""
    click.echo(f"Error: {error}", err=True)
    if isinstance(error, PartialTreeFailure):
        for entry in error.failed:
            ref = entry.task.ref
            click.echo(f"  failed: {ref.bucket}/{ref.key}: {entry.error}", err=True)
    for note in getattr(error, "__notes__", []):
        click.echo(f"  {note}", err=True)


def run_command(action: Callable[[], Any]) -> Any:
    """Run ``action``; on a cloudstore error print it and exit with status 1."""
    try:
        return action()
    except CloudStoreError as e:
        report_failure(e)
        sys.exit(1)
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
