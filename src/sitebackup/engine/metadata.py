"""Backup metadata: collection at backup time, compatibility checks at restore."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from sitebackup.core.errors import IncompatibleBackup
from sitebackup.core.fileutil import atomic_write, remove_path, write_json
from sitebackup.core.models import CONTAINER_WWW, BackupMetadata, SiteSnapshot, SiteType
from sitebackup.engine.archive import META_FILE
from sitebackup.providers.site.base import SiteManager

log = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
WP_CLI = "timeout -k 10 --preserve-status 120 wp"
PLACEHOLDER = "-"


def remote_path_of(generation_path: str) -> str:
    """Strip the rclone remote name: ``backups:sites/a/1`` -> ``sites/a/1``."""
    return generation_path.split(":", 1)[-1]


class MetadataCollector:
    """Gathers site details (and WordPress content counts) before archiving."""

    def __init__(self, sites: SiteManager) -> None:
        self.sites = sites

    def wp(self, site: SiteSnapshot, command: str, skip_plugins_themes: bool = False) -> str:
        """Run a wp-cli command in the site container; empty output becomes ``-``."""
        flags = " --skip-plugins --skip-themes" if skip_plugins_themes else ""
        result = self.sites.shell(site, f"{WP_CLI}{flags} {command}")
        output = result.stdout.strip()
        return output or PLACEHOLDER

    def collect(
        self,
        site: SiteSnapshot,
        work_dir: Path,
        generation_path: str,
        copy_to: Path | None = None,
    ) -> BackupMetadata:
        """Write ``metadata.json`` (and ``meta.json`` for WordPress) into work_dir."""
        metadata = BackupMetadata.for_site(site, remote_path_of(generation_path))

        if site.type is SiteType.WP:
            self._collect_wp(site, metadata, work_dir)

        metadata_file = work_dir / METADATA_FILE
        write_json(metadata_file, metadata.to_dict())
        if copy_to is not None:
            shutil.copyfile(metadata_file, copy_to)
        return metadata

    def _collect_wp(self, site: SiteSnapshot, metadata: BackupMetadata, work_dir: Path) -> None:
        counts = {
            "post_count": self.wp(site, "post list --format=count", True),
            "page_count": self.wp(site, "post list --post_type=page --format=count", True),
            "comment_count": self.wp(site, "comment list --format=count", True),
            "upload_count": self._upload_count(site),
            "plugin_count": _numeric_or_placeholder(self.wp(site, "plugin list --format=count")),
            "theme_count": _numeric_or_placeholder(self.wp(site, "theme list --format=count")),
            "user_count": self.wp(site, "user list --format=count", True),
        }
        metadata.counts = counts
        metadata.wp_version = self.wp(site, "core version", True)

        meta = {
            "siteUrl": site.url,
            "phpVersion": site.php_version,
            "wordpressVersion": metadata.wp_version,
            "plugins": self._inventory(site, "plugin"),
            "themes": self._inventory(site, "theme"),
        }
        write_json(work_dir / META_FILE, meta)

    def _upload_count(self, site: SiteSnapshot) -> str:
        prefix = self.wp(site, "config get table_prefix", True)
        query_file = site.htdocs_dir / "query.sql"
        atomic_write(
            query_file,
            f'SELECT COUNT(*) FROM {prefix}posts WHERE post_type = "attachment"',
        )
        try:
            count = self.wp(
                site,
                f"db query < {CONTAINER_WWW}htdocs/query.sql --skip-column-names "
                "| tr -d '[:space:]'",
                True,
            )
        finally:
            remove_path(query_file)
        return "0" if count == PLACEHOLDER else count

    def _inventory(self, site: SiteSnapshot, kind: str) -> list[dict]:
        output = self.wp(site, f"{kind} list --format=json")
        if output == PLACEHOLDER:
            return []
        try:
            items = json.loads(output)
        except ValueError:
            log.warning("Failed to get %s list.", kind)
            return []
        if not isinstance(items, list):
            log.warning("Failed to get %s list.", kind)
            return []
        return [
            {
                "name": item.get("name"),
                "status": item.get("status"),
                "version": item.get("version"),
            }
            for item in items
            if isinstance(item, dict)
        ]


def _numeric_or_placeholder(value: str) -> str:
    return value if value.isdigit() else PLACEHOLDER


def verify_compatibility(site: SiteSnapshot, backup: BackupMetadata) -> None:
    """Refuse restores whose payload does not fit the target site.

    Raises:
        IncompatibleBackup: site type, database presence or public dir differ.
    """
    if site.type.value != backup.site_type:
        raise IncompatibleBackup(
            f"Site type does not match with the backed up site "
            f"(site: {site.type.value}, backup: {backup.site_type})."
        )
    if site.has_db != backup.has_db:
        raise IncompatibleBackup("Database mismatch between backup and current site.")
    if site.container_fs_path != backup.site_container_fs_path:
        raise IncompatibleBackup(
            f"Site public-dir does not match with the backed up site "
            f"(site: {site.container_fs_path}, backup: {backup.site_container_fs_path})."
        )
