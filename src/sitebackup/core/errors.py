"""Error types raised by the backup/restore engine."""

from __future__ import annotations


class BackupError(Exception):
    """Base error for backup and restore operations."""


class ConfigError(BackupError):
    """Invalid or missing configuration (e.g. malformed --dash-auth)."""


class NotFound(BackupError):
    """A required local path does not exist."""


class SiteNotFound(BackupError):
    """The site lookup collaborator does not know the site."""


class ToolMissing(BackupError):
    """A required external utility is not installed or not configured."""


class LockHeld(BackupError):
    """Another backup/restore holds the site lock."""


class InsufficientSpace(BackupError):
    """Not enough free disk space for the operation."""

    def __init__(self, message: str, required: int, available: int) -> None:
        super().__init__(message)
        self.required = required
        self.available = available

    @property
    def additional(self) -> int:
        return self.required - self.available


class IncompatibleBackup(BackupError):
    """The selected backup cannot be restored into this site."""


class RemoteTransferFailure(BackupError):
    """The remote sync tool exited non-zero."""


class CallbackDeliveryFailure(BackupError):
    """The status service could not be reached after all retries."""


class PruneFailure(BackupError):
    """A remote generation could not be deleted."""
