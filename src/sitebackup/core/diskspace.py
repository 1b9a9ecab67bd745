"""Directory sizes, free space and the disk-space preflight check."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import psutil

from sitebackup.core.errors import InsufficientSpace, NotFound

log = logging.getLogger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB")


def directory_size(path: Path) -> int:
    """Sum the sizes of all readable files below path.

    Unreadable entries are skipped silently. Symlinks are not followed.

    Raises:
        NotFound: path does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise NotFound(f"Directory does not exist: {path}")

    log.debug("Calculating size of %s", path)
    total = 0
    for root, _dirs, files in os.walk(path, onerror=lambda _e: None):
        for name in files:
            fp = os.path.join(root, name)
            if os.path.islink(fp) or not os.access(fp, os.R_OK):
                continue
            try:
                total += os.stat(fp).st_size
            except OSError:
                continue
    log.debug("Size of %s: %d", path, total)
    return total


def free_space(path: Path) -> int:
    """Bytes available to unprivileged users on the filesystem holding path."""
    return psutil.disk_usage(str(path)).free


def format_bytes(num: int, precision: int = 2) -> str:
    """Human-readable size using 1024 steps: ``1.5 GB``, ``512 B``."""
    num = max(num, 0)
    power = 0
    while power < len(_UNITS) - 1 and num >= 1024 ** (power + 1):
        power += 1
    value = round(num / (1024 ** power), precision)
    text = f"{value:.{precision}f}".rstrip("0").rstrip(".")
    return f"{text} {_UNITS[power]}"


def shortfall_message(operation: str, required: int, available: int) -> str:
    """Operator-facing report for a failed disk-space check."""
    additional = required - available
    return (
        f"Not enough disk space to {operation}.\n"
        f"Required: {format_bytes(required)} ({required:,} bytes)\n"
        f"Available: {format_bytes(available)} ({available:,} bytes)\n"
        f"Additional space needed: {format_bytes(additional)} ({additional:,} bytes)\n"
        "Please free up some space and try again."
    )


def check_space(operation: str, required: int, available: int) -> None:
    """Raise InsufficientSpace when required exceeds available."""
    log.debug("Space check for %s: required=%d available=%d", operation, required, available)
    if required > available:
        raise InsufficientSpace(
            shortfall_message(operation, required, available),
            required=required,
            available=available,
        )
