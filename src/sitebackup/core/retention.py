"""Retention of remote backup generations: keep the newest N, purge the rest."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sitebackup.core.errors import BackupError, PruneFailure

if TYPE_CHECKING:
    from sitebackup.providers.remote.base import RemoteStore

log = logging.getLogger(__name__)

DEFAULT_RETENTION = 7


@dataclass
class RetentionResult:
    """Result of a retention run."""

    kept: list[str] = field(default_factory=list)
    purged: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def planned(self) -> int:
        return len(self.purged) + len(self.errors)


def plan_retention(generations: list[str], keep: int = DEFAULT_RETENTION) -> list[str]:
    """Return the generations to purge, oldest first.

    ``generations`` must be sorted newest first. Nothing is purged until the
    listing holds more than ``keep + 1`` entries, so the generation that was
    just uploaded is never counted against itself.
    """
    keep = max(int(keep), 0)
    if len(generations) <= keep + 1:
        return []
    return list(reversed(generations[keep:]))


def run_retention(
    store: RemoteStore,
    site_url: str,
    keep: int = DEFAULT_RETENTION,
) -> RetentionResult:
    """Purge old generations of one site. Failures are logged, never raised."""
    result = RetentionResult()

    try:
        generations = store.list_generations(site_url)
    except BackupError as e:
        log.warning("Could not list backups for retention: %s", e)
        result.errors.append(str(e))
        return result

    to_purge = plan_retention(generations, keep)
    result.kept = [g for g in generations if g not in to_purge]

    if not to_purge:
        log.debug(
            "No cleanup needed. Current backups: %d, maximum allowed: %d",
            len(generations), keep,
        )
        return result

    log.info("Cleaning up old backups. Keeping %d most recent backups.", keep)
    for backup_id in to_purge:
        log.info("Deleting old backup: %s", backup_id)
        try:
            store.purge(site_url, backup_id)
        except PruneFailure as e:
            log.warning("Failed to delete old backup: %s (%s)", backup_id, e)
            result.errors.append(backup_id)
            continue
        result.purged.append(backup_id)

    log.info("Cleaned up %d old backup(s).", len(result.purged))
    return result
