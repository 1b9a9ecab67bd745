"""Per-site lock marker shared by backup and restore."""

from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path

from sitebackup.core.errors import LockHeld
from sitebackup.core.fileutil import ensure_dir

log = logging.getLogger(__name__)


class SiteLock:
    """Marker file ``<backup_dir>/<site>.lock``.

    While the file exists a backup or restore of that site is in flight.
    A crashed process leaves it behind; the operator removes it by hand.
    """

    def __init__(self, backup_dir: Path, site_url: str) -> None:
        self.path = Path(backup_dir) / f"{site_url}.lock"
        self.site_url = site_url
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def is_locked(self) -> bool:
        return self.path.exists()

    def acquire(self) -> None:
        """Create the marker, or raise LockHeld if it already exists."""
        ensure_dir(self.path.parent)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise LockHeld(
                "Another backup/restore process is running for "
                f"{self.site_url}. Please wait for it to complete.\n"
                f"If no such process exists, remove the stale lock: {self.path}"
            ) from None
        with os.fdopen(fd, "w") as f:
            f.write(f"{os.getpid()}\n")
        self._held = True
        log.debug("Acquired lock %s", self.path)

    def release(self) -> None:
        """Remove the marker if this instance created it.

        Idempotent. A lock owned by another invocation is never touched.
        """
        if not self._held:
            return
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
        self._held = False
        log.debug("Released lock %s", self.path)
