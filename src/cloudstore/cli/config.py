"""Configuration utilities for the cloudstore CLI.

This module provides shared configuration functions used across CLI commands:
the config directory, the JSON config file, environment overrides and
logging setup.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any

from cloudstore.core.config import ClientConfig
from cloudstore.core.errors import UsageError

ENV_PREFIX = "CLOUDSTORE_"


def get_config_dir() -> Path:
    """Get the configuration directory for cloudstore.

    Returns:
        Path to ~/.cloudstore, or $CLOUDSTORE_HOME when set.
    """
    home = os.environ.get(f"{ENV_PREFIX}HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".cloudstore"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file.

    Raises:
        UsageError: If the file is not valid JSON.
    """
    config_file = get_config_file()
    if not config_file.exists():
        return {}
    try:
        return dict(json.loads(config_file.read_text()))
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        raise UsageError(f"Invalid config file {config_file}: {e}") from e


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def env_overrides() -> dict[str, str]:
    """ClientConfig fields set through ``CLOUDSTORE_<FIELD>`` variables."""
    overrides = {}
    for f in fields(ClientConfig):
        value = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if value is not None:
            overrides[f.name] = value
    return overrides


def build_client_config(scheme: str) -> ClientConfig:
    """Build the ClientConfig for URIs of ``scheme``.

    Top-level config file keys apply to every backend; a nested object named
    after the scheme ("s3" or "gs") overrides them, and environment variables
    override both.
    """
    data = load_config()
    merged: dict[str, Any] = {k: v for k, v in data.items() if not isinstance(v, dict)}
    section = data.get(scheme)
    if isinstance(section, dict):
        merged.update(section)
    merged.update(env_overrides())
    merged["backend"] = scheme
    if "key_dir" not in merged:
        merged["key_dir"] = get_config_dir() / "keys"
    return ClientConfig.from_mapping(merged)


def setup_logging(verbose: bool = False) -> None:
    """Send cloudstore log records to stderr.

    INFO by default, DEBUG with ``verbose``.
    """
    cloudstore_logger = logging.getLogger("cloudstore")
    for handler in list(cloudstore_logger.handlers):
        if getattr(handler, "_cloudstore_cli", False):
            cloudstore_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler._cloudstore_cli = True  # type: ignore[attr-defined]
    if verbose:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    cloudstore_logger.addHandler(handler)
    cloudstore_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
