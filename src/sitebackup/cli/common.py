"""Shared setup for the site-backup commands."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from sitebackup.core.config import config_path, load_config, resolve_home
from sitebackup.providers.registry import registry

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

home_option = click.option(
    "--home",
    type=click.Path(path_type=Path),
    default=None,
    help="Override SITEBACKUP_HOME path.",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")


def setup_logging(config: dict, verbose: bool = False) -> None:
    log_cfg = config.get("logging", {})
    level_name = "debug" if verbose else str(log_cfg.get("level", "info"))
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = log_cfg.get("file")
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_path), encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def load_context(home: Path | None, verbose: bool = False) -> tuple[dict, object, object]:
    """Load config and instantiate the configured site manager and remote store."""
    home_path = home or resolve_home()
    config = load_config(config_path(home_path), home=home_path)
    setup_logging(config, verbose)

    site_name = config.get("site", {}).get("manager", "ee")
    remote_name = config.get("remote", {}).get("provider", "rclone")
    try:
        sites = registry.get("site", site_name, config)
        store = registry.get("remote", remote_name, config)
    except KeyError as e:
        raise click.ClickException(str(e.args[0])) from e
    return config, sites, store
