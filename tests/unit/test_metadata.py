"""Tests for sitebackup.engine.metadata."""

import json
from dataclasses import replace
from pathlib import Path

import pytest
from conftest import FakeSiteManager, build_site, wp_cli_handler

from sitebackup.core.errors import IncompatibleBackup
from sitebackup.core.models import BackupMetadata, SiteType
from sitebackup.engine.metadata import MetadataCollector, remote_path_of, verify_compatibility


class TestRemotePath:
    def test_strips_remote_name(self):
        assert remote_path_of("backups:sites/a.com/1_x") == "sites/a.com/1_x"


class TestCollectWordPress:
    def test_counts_and_files(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.WP)
        queries: list = []
        sites = FakeSiteManager(site, wp_cli_handler(site, queries))
        work = tmp_path / "work"
        work.mkdir()
        copy_to = tmp_path / "example.com.metadata.json"

        metadata = MetadataCollector(sites).collect(
            site, work, "backups:sites/example.com/1_x", copy_to=copy_to,
        )

        assert metadata.counts == {
            "post_count": "10",
            "page_count": "3",
            "comment_count": "4",
            "upload_count": "7",
            "plugin_count": "5",
            "theme_count": "-",
            "user_count": "2",
        }
        assert metadata.wp_version == "6.4.2"
        assert metadata.remote_path == "sites/example.com/1_x"
        assert queries == ['SELECT COUNT(*) FROM wp_posts WHERE post_type = "attachment"']
        assert not (site.htdocs_dir / "query.sql").exists()

        stored = json.loads((work / "metadata.json").read_text())
        assert stored["site_type"] == "wp"
        assert stored["post_count"] == "10"
        assert stored["db_name"] == "site_db"
        assert "s3cret" not in (work / "metadata.json").read_text()
        assert copy_to.read_text() == (work / "metadata.json").read_text()

        meta = json.loads((work / "meta.json").read_text())
        assert meta["siteUrl"] == "example.com"
        assert meta["wordpressVersion"] == "6.4.2"
        assert meta["plugins"] == [{"name": "akismet", "status": "active", "version": "5.3"}]
        assert meta["themes"] == []

    def test_wp_cli_wrapper(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.WP)
        sites = FakeSiteManager(site)
        collector = MetadataCollector(sites)

        assert collector.wp(site, "core version", True) == "-"
        assert sites.commands[-1] == (
            "timeout -k 10 --preserve-status 120 wp --skip-plugins --skip-themes core version"
        )


class TestCollectOtherTypes:
    def test_html_has_no_counts(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.HTML)
        sites = FakeSiteManager(site)
        work = tmp_path / "work"
        work.mkdir()

        MetadataCollector(sites).collect(site, work, "backups:sites/example.com/1_x")

        stored = json.loads((work / "metadata.json").read_text())
        assert stored["site_type"] == "html"
        assert "post_count" not in stored
        assert not (work / "meta.json").exists()
        assert sites.commands == []


class TestVerifyCompatibility:
    def _backup(self, site) -> BackupMetadata:
        return BackupMetadata.for_site(site, "sites/example.com/1_x")

    def test_matching(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.WP)
        verify_compatibility(site, self._backup(site))

    def test_type_mismatch(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.WP)
        backup = self._backup(site)
        backup.site_type = "php"
        with pytest.raises(IncompatibleBackup, match="Site type does not match"):
            verify_compatibility(site, backup)

    def test_database_mismatch(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.PHP)
        backup = self._backup(replace(site, db=None))
        with pytest.raises(IncompatibleBackup, match="Database mismatch"):
            verify_compatibility(site, backup)

    def test_public_dir_mismatch(self, tmp_path: Path):
        site = build_site(tmp_path, SiteType.WP)
        backup = self._backup(replace(site, container_fs_path="/var/www/htdocs/current"))
        with pytest.raises(IncompatibleBackup, match="public-dir does not match"):
            verify_compatibility(site, backup)
