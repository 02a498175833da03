"""Configuration commands for the cloudstore CLI.

Commands:
- config show: Print the settings stored in the config file
- config set: Store a client setting, globally or for one URI scheme
"""

from __future__ import annotations

import json
from dataclasses import fields

import click

from cloudstore.cli.config import get_config_file, load_config, save_config
from cloudstore.cli.context import run_command
from cloudstore.core.config import ClientConfig
from cloudstore.core.errors import UsageError
from cloudstore.core.uri import SCHEMES

# The backend follows from the URI scheme of each command
SETTINGS = sorted(f.name for f in fields(ClientConfig) if f.name != "backend")


@click.group()
def config() -> None:
    """Show or change the settings in the config file."""


@config.command("show")
def show() -> None:
    """Print the config file."""

    def action() -> None:
        click.echo(json.dumps(load_config(), indent=2, sort_keys=True))

    run_command(action)


@config.command("set")
@click.argument("name", type=click.Choice(SETTINGS))
@click.argument("value")
@click.option(
    "--scheme",
    type=click.Choice(SCHEMES),
    help="Only apply the setting to URIs of this scheme.",
)
def set_setting(name: str, value: str, scheme: str | None) -> None:
    """Store setting NAME with VALUE in the config file."""

    def action() -> None:
        ClientConfig.from_mapping({name: value})
        data = load_config()
        section = data
        if scheme is not None:
            section = data.setdefault(scheme, {})
            if not isinstance(section, dict):
                raise UsageError(
                    f"Config entry '{scheme}' in {get_config_file()} is not a section"
                )
        section[name] = value
        save_config(data)
        target = f"{scheme}:{name}" if scheme else name
        click.echo(f"Set {target} in {get_config_file()}")

    run_command(action)
