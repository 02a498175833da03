"""Pending multipart upload commands for the cloudstore CLI.

Commands:
- pending list: List multipart uploads that were never completed
- pending abort: Abort them, optionally only old ones
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import click

from cloudstore.cli.context import open_client, parse_uris, run_command
from cloudstore.core.config import TransferOptions


@click.group()
def pending() -> None:
    """Manage pending multipart uploads.

    Uploads interrupted before completion keep their parts (and their
    storage cost) until aborted.
    """


@pending.command("list")
@click.argument("url")
def list_cmd(url: str) -> None:
    """List pending uploads under URL."""
    ctx = click.get_current_context()

    def action() -> None:
        scheme, [(bucket, prefix)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            uploads = client.list_pending_uploads(bucket, prefix).result()
        if not uploads:
            click.echo("No pending uploads.")
            return
        for upload in uploads:
            initiated = upload.initiated.isoformat() if upload.initiated else "-"
            click.echo(f"{initiated}  {upload.upload_id}  {scheme}://{upload.bucket}/{upload.key}")

    run_command(action)


@pending.command("abort")
@click.argument("url")
@click.option("--upload-id", default=None, help="Only abort this upload.")
@click.option(
    "--older-than-hours",
    type=float,
    default=None,
    help="Only abort uploads initiated more than N hours ago.",
)
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything.")
def abort_cmd(
    url: str, upload_id: str | None, older_than_hours: float | None, dry_run: bool
) -> None:
    """Abort pending uploads under URL."""
    ctx = click.get_current_context()
    older_than = None
    if older_than_hours is not None:
        older_than = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)

    def action() -> None:
        scheme, [(bucket, prefix)] = parse_uris(url)
        with open_client(ctx, scheme) as client:
            aborted = client.abort_pending_uploads(
                bucket,
                prefix,
                upload_id=upload_id,
                older_than=older_than,
                options=TransferOptions(dry_run=dry_run),
            ).result()
        if not dry_run:
            click.echo(f"Aborted {len(aborted)} pending upload(s).")

    run_command(action)
