"""Configuration loader for sitebackup."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

log = logging.getLogger(__name__)

DEFAULT_HOME = "/opt/sitebackup"

DEFAULTS: dict = {
    "home": DEFAULT_HOME,
    # Working root for local backup copies, lock files and metadata snapshots.
    # Defaults to <home>/.backup when unset.
    "backup_dir": None,
    "remote": {
        "provider": "rclone",
        "path": "backups:sites",
        "retention": 7,
    },
    "transfer": {
        "max_buffer_mb": 4096,
        "max_download_streams": 32,
        "max_s3_concurrency": 32,
        "s3_chunk_size": "64M",
    },
    "dash": {
        "api_url": "",
        "retry_delay": 300,
        "max_retries": 3,
        "timeout": 30,
    },
    "site": {
        "manager": "ee",
        "command": "ee",
        "runtime_user": "www-data",
        "runtime_group": "www-data",
        "db_container": "services_global-db_1",
    },
    "tools": {
        "auto_install": True,
        # command -> package providing it
        "required": {"rclone": "rclone"},
    },
    "logging": {
        "level": "info",
        "file": None,
    },
}


def resolve_home() -> Path:
    """Resolve SITEBACKUP_HOME: env var > default /opt/sitebackup."""
    env_home = os.environ.get("SITEBACKUP_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path(DEFAULT_HOME)


def config_path(home: Path | None = None) -> Path:
    """Return the path to config.yaml."""
    if home is None:
        home = resolve_home()
    return home / "config.yaml"


def load_config(path: Path | None = None, home: Path | None = None) -> dict:
    """Load config.yaml and merge with defaults.

    Args:
        path: Explicit path to config.yaml. If None, uses default location.
        home: Home directory given on the command line; wins over env and file.

    Returns:
        Merged configuration dict with ``home`` and ``backup_dir`` resolved.
    """
    if path is None:
        path = config_path(home)

    user_config: dict = {}
    if path.exists():
        try:
            raw = path.read_text(encoding="utf-8")
            user_config = yaml.safe_load(raw) or {}
        except Exception:
            log.warning("Failed to read config at %s, using defaults", path, exc_info=True)

    merged = merge_config(user_config)

    home_str = home or os.environ.get("SITEBACKUP_HOME") or merged.get("home") or DEFAULT_HOME
    merged["home"] = str(Path(home_str).expanduser().resolve())

    backup_dir = merged.get("backup_dir") or str(Path(merged["home"]) / ".backup")
    merged["backup_dir"] = str(Path(backup_dir).expanduser().resolve())

    return merged


def merge_config(user_config: dict) -> dict:
    """Merge user settings over DEFAULTS.

    ``tools.required`` replaces the default mapping instead of merging into it,
    so an empty mapping switches the tool check off.
    """
    merged = _deep_merge(DEFAULTS, user_config)
    tools = user_config.get("tools")
    if isinstance(tools, dict) and isinstance(tools.get("required"), dict):
        merged["tools"] = {**merged["tools"], "required": dict(tools["required"])}
    return merged


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
