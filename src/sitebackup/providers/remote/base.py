"""RemoteStore Protocol."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class RemoteStore(Protocol):
    """Contract for remote storage of backup generations.

    A generation is one directory ``<base>/<site>/<backup id>`` holding every
    artifact of a single backup run.
    """

    @property
    def name(self) -> str:
        """Provider ID: 'rclone', ..."""
        ...

    def check(self) -> None:
        """Verify the remote is configured. Raises ToolMissing otherwise."""
        ...

    def generation_path(self, site_url: str, backup_id: str) -> str:
        """Addressable location of one generation."""
        ...

    def list_generations(self, site_url: str) -> list[str]:
        """Backup IDs for the site, most recent first."""
        ...

    def size(self, site_url: str, backup_id: str) -> int:
        """Total bytes stored in one generation."""
        ...

    def upload(self, local_dir: Path, site_url: str, backup_id: str) -> str:
        """Copy local_dir to a new generation. Returns its remote path."""
        ...

    def download(self, site_url: str, backup_id: str, local_dir: Path) -> None:
        """Copy a generation into local_dir."""
        ...

    def purge(self, site_url: str, backup_id: str) -> None:
        """Recursively delete one generation. Raises PruneFailure."""
        ...
