"""Restore orchestration.

One run walks the site through::

    START -> LOCKED -> PREFLIGHT_OK -> LOCAL_COPY_ENSURED -> METADATA_VERIFIED
          -> SITE_TYPE_RESTORED -> OVERLAY_RESTORED -> RELOADED -> UNLOCKED -> DONE

Nothing under the site directory is written before METADATA_VERIFIED.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from sitebackup.core.errors import IncompatibleBackup, NotFound
from sitebackup.core.fileutil import (
    DIR_MODE,
    atomic_write,
    clear_directory,
    ensure_dir,
    merge_tree,
    normalize_ownership,
    read_json,
    remove_path,
)
from sitebackup.core.lock import SiteLock
from sitebackup.core.models import BackupMetadata, SiteSnapshot, SiteType
from sitebackup.core.runner import Runner
from sitebackup.engine import preflight
from sitebackup.engine.archive import (
    CONF_ARCHIVE,
    META_FILE,
    OVERLAY_ARCHIVE,
    OVERLAY_COMPOSE,
    OVERLAY_DIR,
    SiteArchive,
    is_uploads_member,
)
from sitebackup.engine.database import SQL_DIR, DatabaseAdapter
from sitebackup.engine.metadata import METADATA_FILE, WP_CLI, verify_compatibility
from sitebackup.providers.remote.base import RemoteStore
from sitebackup.providers.site.base import SiteManager

log = logging.getLogger(__name__)

_PHP_CONFIG_ITEMS = ("php-fpm.d", "php/php.ini", "php/conf.d/custom.ini")


class RestoreStep(str, Enum):
    START = "start"
    LOCKED = "locked"
    PREFLIGHT_OK = "preflight_ok"
    LOCAL_COPY_ENSURED = "local_copy_ensured"
    METADATA_VERIFIED = "metadata_verified"
    SITE_TYPE_RESTORED = "site_type_restored"
    OVERLAY_RESTORED = "overlay_restored"
    RELOADED = "reloaded"
    UNLOCKED = "unlocked"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RestoreReport:
    site_url: str
    step: RestoreStep = RestoreStep.START
    backup_id: str | None = None
    downloaded: bool = False
    steps: list[RestoreStep] = field(default_factory=list)

    def advance(self, step: RestoreStep) -> None:
        self.step = step
        self.steps.append(step)
        log.debug("Restore of %s: %s", self.site_url, step.value)


def select_generation(generations: list[str], backup_id: str | None = None) -> str:
    """Pick the generation to restore from a newest-first listing.

    Raises:
        NotFound: there are no generations at all.
        IncompatibleBackup: backup_id is given but not in the listing.
    """
    if not generations:
        raise NotFound("No backups found in remote storage.")
    if backup_id is None:
        return generations[0]
    if backup_id not in generations:
        raise IncompatibleBackup(
            f"Backup with id {backup_id} not found. "
            f"Available backups: {', '.join(generations)}"
        )
    return backup_id


class RestoreOrchestrator:
    """Brings a site back to the state of one remote generation."""

    def __init__(
        self,
        config: dict,
        sites: SiteManager,
        store: RemoteStore,
        runner: Runner | None = None,
    ) -> None:
        self.config = config
        self.sites = sites
        self.store = store
        self.runner = runner or Runner()

        site_cfg = config.get("site", {})
        self.backup_dir = Path(config["backup_dir"])
        self.user = site_cfg.get("runtime_user") or None
        self.group = site_cfg.get("runtime_group") or None
        self.database = DatabaseAdapter(
            sites, self.runner, db_container=site_cfg.get("db_container", "")
        )

    def run(self, site_url: str, backup_id: str | None = None) -> RestoreReport:
        """Restore the site from backup_id, or from the newest generation.

        Raises:
            BackupError: any abort; the lock is released first.
        """
        report = RestoreReport(site_url=site_url)
        report.advance(RestoreStep.START)

        site = self.sites.lookup(site_url)
        lock = SiteLock(self.backup_dir, site.url)
        lock.acquire()
        report.advance(RestoreStep.LOCKED)

        try:
            selected = self._preflight(site, backup_id)
            report.backup_id = selected
            report.advance(RestoreStep.PREFLIGHT_OK)

            work_dir = self.backup_dir / site.url
            report.downloaded = self._ensure_local_copy(site, selected, work_dir)
            report.advance(RestoreStep.LOCAL_COPY_ENSURED)

            backup = self._load_metadata(work_dir)
            verify_compatibility(site, backup)
            report.advance(RestoreStep.METADATA_VERIFIED)

            self._prepare_site_dir(site)
            archive = SiteArchive(work_dir / f"{site.url}.zip")
            match site.type:
                case SiteType.HTML | SiteType.PHP:
                    self.restore_site_files(site, archive)
                case SiteType.WP:
                    self.restore_wordpress(site, archive, work_dir)
            self.restore_config(site, work_dir)
            if site.type is SiteType.WP:
                self._wp(site, "cache flush", skip_plugins_themes=True)
            report.advance(RestoreStep.SITE_TYPE_RESTORED)

            if self.restore_overlay(site, work_dir):
                self.sites.enable(site, force=True)
            report.advance(RestoreStep.OVERLAY_RESTORED)

            remove_path(work_dir)
            self.sites.reload(site)
            report.advance(RestoreStep.RELOADED)
        except Exception:
            report.advance(RestoreStep.FAILED)
            lock.release()
            raise

        lock.release()
        report.advance(RestoreStep.UNLOCKED)
        log.info("Restore of %s completed from backup %s.", site.url, report.backup_id)
        report.advance(RestoreStep.DONE)
        return report

    # --- Preflight and local copy ---

    def _preflight(self, site: SiteSnapshot, backup_id: str | None) -> str:
        tools_cfg = self.config.get("tools", {})
        preflight.ensure_tools(
            tools_cfg.get("required", {}),
            self.runner,
            auto_install=bool(tools_cfg.get("auto_install", True)),
        )
        self.store.check()

        selected = select_generation(self.store.list_generations(site.url), backup_id)
        log.info("Restoring backup %s.", selected)

        required = self.store.size(site.url, selected)
        preflight.check_restore_space(required, self.backup_dir)
        return selected

    def _ensure_local_copy(self, site: SiteSnapshot, backup_id: str, work_dir: Path) -> bool:
        """Download the generation unless work_dir already holds it.

        Returns True when a download happened.
        """
        metadata_file = work_dir / METADATA_FILE
        if metadata_file.is_file():
            try:
                local = BackupMetadata.from_dict(read_json(metadata_file))
            except ValueError:
                local = None
            if local is None or not local.remote_path.rstrip("/").endswith(backup_id):
                log.info("Local backup copy is stale, downloading again.")
            elif not (work_dir / f"{site.url}.zip").is_file():
                log.info("Local copy of backup %s is incomplete, downloading again.", backup_id)
            else:
                log.info("Using local copy of backup %s.", backup_id)
                return False

        remove_path(work_dir)
        ensure_dir(work_dir)
        log.info("Downloading backup from remote storage.")
        self.store.download(site.url, backup_id, work_dir)
        return True

    def _load_metadata(self, work_dir: Path) -> BackupMetadata:
        metadata_file = work_dir / METADATA_FILE
        if not metadata_file.is_file():
            raise IncompatibleBackup(f"{METADATA_FILE} not found in the backup.")
        try:
            return BackupMetadata.from_dict(read_json(metadata_file))
        except ValueError as e:
            raise IncompatibleBackup(f"Invalid {METADATA_FILE} in the backup: {e}") from e

    def _prepare_site_dir(self, site: SiteSnapshot) -> None:
        ensure_dir(site.content_dir, DIR_MODE)
        normalize_ownership(site.content_dir, self.user, self.group)

    # --- Type-specific restore ---

    def restore_site_files(self, site: SiteSnapshot, archive: SiteArchive) -> None:
        """Replace the app tree with the archive, then replay sql/ if present."""
        log.info("Restoring site files.")
        if not archive.exists:
            raise IncompatibleBackup(f"Site archive {archive.path.name} not found in the backup.")
        clear_directory(site.app_dir)
        archive.extract(site.app_dir)
        normalize_ownership(site.app_dir, self.user, self.group)
        self._restore_sql(site)

    def restore_wordpress(self, site: SiteSnapshot, archive: SiteArchive, work_dir: Path) -> None:
        if not archive.exists:
            raise IncompatibleBackup(f"Site archive {archive.path.name} not found in the backup.")
        names = archive.names()
        if not any(n.startswith("wp-content/") for n in names):
            log.warning("Backup has no wp-content directory, restoring complete site directory.")
            self.restore_site_files(site, archive)
            return

        site_dir = site.content_dir

        log.info("Downloading WordPress core.")
        version = ""
        if archive.extract_member(META_FILE, work_dir):
            version = str(read_json(work_dir / META_FILE).get("wordpressVersion", ""))
        version_flag = f" --version={shlex.quote(version)}" if version and version != "-" else ""
        self._wp(site, f"core download --force{version_flag}", skip_plugins_themes=True)

        log.info("Restoring wp-config.php.")
        if archive.extract_member("wp-config.php", site_dir.parent):
            self._set_db_config(site)
        self._write_wp_cli_yml(site)

        if site.has_db:
            archive.extract(site.app_dir, include=lambda n: n.startswith(f"{SQL_DIR}/"))
            self._restore_sql(site)

        log.info("Restoring wp-content.")
        wp_content = site_dir / "wp-content"
        uploads = wp_content / "uploads"
        parked = None
        if uploads.is_symlink():
            parked = site.app_dir / ".uploads-link"
            remove_path(parked)
            uploads.rename(parked)
        try:
            remove_path(wp_content)
            archive.extract(
                site_dir,
                include=lambda n: n.startswith("wp-content/") and not is_uploads_member(n),
            )
        finally:
            ensure_dir(wp_content)
            if parked is not None:
                remove_path(uploads)
                parked.rename(uploads)

        log.info("Restoring uploads.")
        archive.extract(site_dir, include=is_uploads_member)

        normalize_ownership(site.app_dir, self.user, self.group)
        if uploads.is_symlink():
            normalize_ownership(uploads.resolve(), self.user, self.group)

    def _restore_sql(self, site: SiteSnapshot) -> None:
        sql_dir = site.app_dir / SQL_DIR
        if site.has_db and sql_dir.is_dir():
            self.database.restore(site, SQL_DIR)
        remove_path(sql_dir)

    def _set_db_config(self, site: SiteSnapshot) -> None:
        db = site.db
        if db is None:
            return
        values = {
            "DB_NAME": db.name,
            "DB_USER": db.user,
            "DB_PASSWORD": db.password,
            "DB_HOST": db.host,
        }
        for key, value in values.items():
            result = self.sites.shell(
                site,
                f"wp config set {key} {shlex.quote(value)} --skip-plugins --skip-themes",
                secrets=[db.password],
            )
            if not result.ok:
                log.warning("Could not set %s in wp-config.php.", key)

    def _write_wp_cli_yml(self, site: SiteSnapshot) -> None:
        """Point wp-cli at the public dir when it sits below htdocs."""
        relative = site.relative_content_path.strip("/")
        if not relative.startswith("htdocs/"):
            return
        subdir = relative[len("htdocs/"):]
        atomic_write(site.htdocs_dir / "wp-cli.yml", f"path: {subdir}/")

    def _wp(self, site: SiteSnapshot, command: str, skip_plugins_themes: bool = False) -> None:
        flags = " --skip-plugins --skip-themes" if skip_plugins_themes else ""
        result = self.sites.shell(site, f"{WP_CLI}{flags} {command}")
        if not result.ok:
            log.warning("wp %s failed: %s", command, result.stderr.strip())

    # --- Config and overlay ---

    def restore_config(self, site: SiteSnapshot, work_dir: Path) -> None:
        """Merge nginx (and for php/wp, php) configuration from conf.zip."""
        conf = SiteArchive(work_dir / CONF_ARCHIVE)
        if not conf.exists:
            log.warning("%s not found in the backup, skipping configuration.", CONF_ARCHIVE)
            return
        staging = work_dir / "conf"
        remove_path(staging)
        conf.extract(staging)

        log.info("Restoring nginx configuration.")
        merge_tree(staging / "nginx", site.config_dir / "nginx")
        if site.type in (SiteType.PHP, SiteType.WP):
            log.info("Restoring php configuration.")
            for item in _PHP_CONFIG_ITEMS:
                merge_tree(staging / "php" / item, site.config_dir / "php" / item)
        remove_path(staging)

    def restore_overlay(self, site: SiteSnapshot, work_dir: Path) -> bool:
        """Put custom compose overlays back. Returns True if any were restored."""
        restored = False
        compose_file = work_dir / OVERLAY_COMPOSE
        if compose_file.is_file():
            log.info("Restoring %s.", OVERLAY_COMPOSE)
            shutil.copy2(compose_file, site.fs_path / OVERLAY_COMPOSE)
            restored = True

        overlay = SiteArchive(work_dir / OVERLAY_ARCHIVE)
        if overlay.exists:
            log.info("Restoring %s.", OVERLAY_DIR)
            overlay.extract(ensure_dir(site.fs_path / OVERLAY_DIR))
            restored = True
        return restored
