"""Checks that run before a backup or restore touches anything."""

from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Callable, Mapping
from pathlib import Path

from sitebackup.core import diskspace
from sitebackup.core.errors import ToolMissing
from sitebackup.core.runner import Runner

log = logging.getLogger(__name__)

INSTALL_HINTS = {
    "rclone": "https://rclone.org/downloads/#script-download-and-install",
}


def _missing_message(command: str, package: str) -> str:
    hint = INSTALL_HINTS.get(command)
    message = f"{command} is not installed. Please install {package} and try again."
    if hint:
        message += f" See {hint}"
    return message


def ensure_tools(
    required: Mapping[str, str],
    runner: Runner | None = None,
    *,
    auto_install: bool = True,
    platform: str = sys.platform,
    which: Callable[[str], str | None] = shutil.which,
) -> None:
    """Make sure every required command is on PATH.

    ``required`` maps command names to the package providing them. Missing
    tools are installed with apt-get where that is available and allowed.

    Raises:
        ToolMissing: a tool is absent and could not be installed.
    """
    runner = runner or Runner()
    for command, package in required.items():
        if which(command):
            continue

        log.info("%s is not installed.", command)
        if platform == "darwin":
            raise ToolMissing(
                f"{command} is not installed. Please install it using "
                f"`brew install {package}` and try again."
            )
        if not auto_install or not which("apt-get"):
            raise ToolMissing(_missing_message(command, package))

        log.info("Installing %s.", package)
        update = runner.run(["apt-get", "update"])
        if not update.ok:
            log.warning("apt-get update failed: %s", update.stderr.strip())
        install = runner.run(["apt-get", "install", "-y", package])
        if not install.ok or not which(command):
            raise ToolMissing(_missing_message(command, package))
        log.info("%s installed.", package)


def check_backup_space(required: int, backup_dir: Path) -> None:
    """Raise InsufficientSpace if backup_dir cannot hold ``required`` bytes."""
    log.info("Checking disk space for backup.")
    diskspace.check_space("take backup", required, diskspace.free_space(backup_dir))


def check_restore_space(required: int, backup_dir: Path) -> None:
    log.info("Checking disk space for restore.")
    diskspace.check_space("restore backup", required, diskspace.free_space(backup_dir))
