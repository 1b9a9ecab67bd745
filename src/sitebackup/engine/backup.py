"""Backup orchestration.

One run walks the site through::

    START -> LOCKED -> PREFLIGHT_OK -> SNAPSHOT_TAKEN -> ARCHIVED -> UPLOADED
          -> PRUNED | DASH_REPORTED -> UNLOCKED -> DONE

Any error moves it to FAILED. The lock is released on every error that is an
``Exception``; an interrupt leaves it behind for the operator.
"""

from __future__ import annotations

import atexit
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from sitebackup.core import diskspace
from sitebackup.core.errors import CallbackDeliveryFailure
from sitebackup.core.fileutil import ensure_dir, remove_path
from sitebackup.core.lock import SiteLock
from sitebackup.core.models import SiteSnapshot, SiteType, new_backup_id
from sitebackup.core.retention import DEFAULT_RETENTION, RetentionResult, run_retention
from sitebackup.core.runner import Runner
from sitebackup.dash.client import (
    CallbackOutcome,
    DashAuth,
    DashClient,
    DashReporter,
    DashSession,
    install_exit_guard,
)
from sitebackup.engine import preflight
from sitebackup.engine.archive import ArchiveComposer, SiteArchive
from sitebackup.engine.database import DatabaseAdapter
from sitebackup.engine.metadata import MetadataCollector
from sitebackup.providers.remote.base import RemoteStore
from sitebackup.providers.site.base import SiteManager

log = logging.getLogger(__name__)


class BackupStep(str, Enum):
    START = "start"
    LOCKED = "locked"
    PREFLIGHT_OK = "preflight_ok"
    SNAPSHOT_TAKEN = "snapshot_taken"
    ARCHIVED = "archived"
    UPLOADED = "uploaded"
    PRUNED = "pruned"
    DASH_REPORTED = "dash_reported"
    UNLOCKED = "unlocked"
    DONE = "done"
    FAILED = "failed"


@dataclass
class BackupReport:
    """What a backup run did, for the CLI and for tests."""

    site_url: str
    step: BackupStep = BackupStep.START
    backup_id: str | None = None
    remote_path: str | None = None
    retention: RetentionResult | None = None
    dash_outcome: CallbackOutcome | None = None
    dash_error: CallbackDeliveryFailure | None = None
    steps: list[BackupStep] = field(default_factory=list)

    def advance(self, step: BackupStep) -> None:
        self.step = step
        self.steps.append(step)
        log.debug("Backup of %s: %s", self.site_url, step.value)


class BackupOrchestrator:
    """Takes a backup generation of one site and ships it to the remote store."""

    def __init__(
        self,
        config: dict,
        sites: SiteManager,
        store: RemoteStore,
        runner: Runner | None = None,
        dash_client: DashClient | None = None,
        register_exit: Callable[[Callable[[], None]], object] = atexit.register,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.sites = sites
        self.store = store
        self.runner = runner or Runner()
        self.dash_client = dash_client
        self._register_exit = register_exit
        self._clock = clock

        site_cfg = config.get("site", {})
        self.backup_dir = Path(config["backup_dir"])
        self.retention = int(config.get("remote", {}).get("retention", DEFAULT_RETENTION))
        self.database = DatabaseAdapter(
            sites, self.runner, db_container=site_cfg.get("db_container", "")
        )
        self.metadata = MetadataCollector(sites)

    def list_backups(self, site_url: str) -> list[str]:
        """Remote generations of the site, newest first. Takes no lock."""
        site = self.sites.lookup(site_url)
        return self.store.list_generations(site.url)

    def run(self, site_url: str, dash_auth: DashAuth | str | None = None) -> BackupReport:
        """Back up the site.

        Raises:
            BackupError: any abort; the lock is released first.
        """
        report = BackupReport(site_url=site_url)
        report.advance(BackupStep.START)

        session = None
        reporter = None
        if dash_auth:
            auth = DashAuth.parse(dash_auth) if isinstance(dash_auth, str) else dash_auth
            client = self.dash_client or DashClient.from_config(self.config)
            session = DashSession(site_url=site_url, auth=auth)
            install_exit_guard(session, client, self._register_exit)
            reporter = DashReporter(client, self.store, self.retention)

        site = self.sites.lookup(site_url)

        lock = SiteLock(self.backup_dir, site.url)
        lock.acquire()
        report.advance(BackupStep.LOCKED)

        try:
            self._preflight(site)
            report.advance(BackupStep.PREFLIGHT_OK)

            backup_id = new_backup_id(self._clock())
            report.backup_id = backup_id
            work_dir = self.backup_dir / site.url
            remove_path(work_dir)
            ensure_dir(work_dir)

            log.info("Collecting site metadata.")
            metadata = self.metadata.collect(
                site,
                work_dir,
                self.store.generation_path(site.url, backup_id),
                copy_to=self.backup_dir / f"{site.url}.metadata.json",
            )
            report.advance(BackupStep.SNAPSHOT_TAKEN)

            ArchiveComposer(site, work_dir).compose(
                lambda archive: self._dump_database(site, work_dir, archive)
            )
            report.advance(BackupStep.ARCHIVED)

            log.info("Uploading backup to remote storage.")
            remote_path = self.store.upload(work_dir, site.url, backup_id)
            report.remote_path = remote_path
            if session is not None:
                session.backup_id = backup_id
                session.remote_path = remote_path
            remove_path(work_dir)
            report.advance(BackupStep.UPLOADED)

            if reporter is not None:
                report.retention = reporter.report_success(session, metadata.to_dict())
                report.dash_outcome = session.outcome
                if session.outcome is CallbackOutcome.FAILED_FINAL:
                    report.dash_error = CallbackDeliveryFailure(
                        f"Dash did not acknowledge backup {session.auth.backup_id}; "
                        f"the uploaded generation {backup_id} was rolled back."
                    )
                    log.warning("%s", report.dash_error)
                report.advance(BackupStep.DASH_REPORTED)
            else:
                report.retention = run_retention(self.store, site.url, self.retention)
                report.advance(BackupStep.PRUNED)
        except Exception:
            report.advance(BackupStep.FAILED)
            lock.release()
            raise

        lock.release()
        report.advance(BackupStep.UNLOCKED)
        log.info("Backup of %s completed.", site.url)
        report.advance(BackupStep.DONE)
        return report

    def _preflight(self, site: SiteSnapshot) -> None:
        tools_cfg = self.config.get("tools", {})
        preflight.ensure_tools(
            tools_cfg.get("required", {}),
            self.runner,
            auto_install=bool(tools_cfg.get("auto_install", True)),
        )
        self.store.check()

        required = diskspace.directory_size(site.htdocs_dir)
        if site.type in (SiteType.PHP, SiteType.WP) and site.has_db:
            required += self.database.size(site)
        preflight.check_backup_space(required, self.backup_dir)

    def _dump_database(self, site: SiteSnapshot, work_dir: Path, archive: SiteArchive) -> None:
        self.database.dump(site, work_dir, archive)
