"""Shared fakes for the engine tests: runner, site manager and remote store."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from sitebackup.core.config import merge_config
from sitebackup.core.errors import PruneFailure, SiteNotFound
from sitebackup.core.models import DatabaseCredentials, SiteSnapshot, SiteType
from sitebackup.core.runner import CommandResult


class FakeRunner:
    """Records argument lists; answers through an optional handler."""

    def __init__(self, handler=None) -> None:
        self.calls: list[list[str]] = []
        self.secrets: list[list[str]] = []
        self.handler = handler

    def run(self, args, *, cwd=None, secrets=(), stream=False) -> CommandResult:
        self.calls.append(list(args))
        self.secrets.append(list(secrets))
        if self.handler is None:
            return CommandResult(0)
        return self.handler(list(args))


class FakeSiteManager:
    """Site manager serving one site; shell commands go to a handler."""

    def __init__(self, site: SiteSnapshot, handler=None) -> None:
        self.site = site
        self.handler = handler
        self.commands: list[str] = []
        self.secrets: list[list[str]] = []
        self.reloaded = 0
        self.enabled: list[bool] = []

    @property
    def name(self) -> str:
        return "fake"

    def lookup(self, site_url: str) -> SiteSnapshot:
        if site_url != self.site.url:
            raise SiteNotFound(f"Site {site_url} does not exist.")
        return self.site

    def shell(self, site, command, secrets=()) -> CommandResult:
        self.commands.append(command)
        self.secrets.append(list(secrets))
        if self.handler is None:
            return CommandResult(0)
        return self.handler(command)

    def reload(self, site) -> None:
        self.reloaded += 1

    def enable(self, site, force=True) -> None:
        self.enabled.append(force)


class FakeStore:
    """Remote store keeping generations as directories under root."""

    def __init__(self, root: Path, generations: list[str] | None = None) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.seed = list(generations or [])
        self.purged: list[str] = []
        self.fail_purge: set[str] = set()
        self.downloads = 0
        self.checked = 0

    @property
    def name(self) -> str:
        return "fake"

    def check(self) -> None:
        self.checked += 1

    def generation_path(self, site_url: str, backup_id: str) -> str:
        return f"backups:sites/{site_url}/{backup_id}"

    def _dir(self, site_url: str, backup_id: str) -> Path:
        return self.root / site_url / backup_id

    def list_generations(self, site_url: str) -> list[str]:
        site_dir = self.root / site_url
        names = set(self.seed)
        if site_dir.is_dir():
            names.update(p.name for p in site_dir.iterdir())
        return sorted(names, reverse=True)

    def size(self, site_url: str, backup_id: str) -> int:
        path = self._dir(site_url, backup_id)
        return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())

    def upload(self, local_dir: Path, site_url: str, backup_id: str) -> str:
        shutil.copytree(local_dir, self._dir(site_url, backup_id))
        return self.generation_path(site_url, backup_id)

    def download(self, site_url: str, backup_id: str, local_dir: Path) -> None:
        self.downloads += 1
        shutil.copytree(self._dir(site_url, backup_id), local_dir, dirs_exist_ok=True)

    def purge(self, site_url: str, backup_id: str) -> None:
        if backup_id in self.fail_purge:
            raise PruneFailure(self.generation_path(site_url, backup_id))
        self.purged.append(backup_id)
        if backup_id in self.seed:
            self.seed.remove(backup_id)
        shutil.rmtree(self._dir(site_url, backup_id), ignore_errors=True)


def build_site(root: Path, site_type: SiteType, url: str = "example.com", with_db: bool = True):
    """Lay out an ee-style site directory and return its snapshot."""
    fs_path = root / "sites" / url
    htdocs = fs_path / "app" / "htdocs"
    htdocs.mkdir(parents=True)
    (fs_path / "config" / "nginx").mkdir(parents=True)
    (fs_path / "config" / "nginx" / "main.conf").write_text("server {}\n", encoding="utf-8")
    (fs_path / "config" / "php" / "php-fpm.d").mkdir(parents=True)
    (fs_path / "config" / "php" / "php" / "conf.d").mkdir(parents=True)
    (fs_path / "config" / "php" / "php" / "php.ini").write_text("memory_limit=128M\n", encoding="utf-8")
    (fs_path / "config" / "php" / "php" / "conf.d" / "custom.ini").write_text(
        "upload_max_filesize=64M\n", encoding="utf-8"
    )
    (fs_path / "config" / "php" / "php-fpm.d" / "www.conf").write_text("[www]\n", encoding="utf-8")

    if site_type is SiteType.WP:
        (fs_path / "app" / "wp-config.php").write_text("<?php // config\n", encoding="utf-8")
        plugins = htdocs / "wp-content" / "plugins" / "akismet"
        plugins.mkdir(parents=True)
        (plugins / "akismet.php").write_text("<?php\n", encoding="utf-8")
        uploads = htdocs / "wp-content" / "uploads" / "2024"
        uploads.mkdir(parents=True)
        (uploads / "photo.jpg").write_bytes(b"\xff\xd8jpeg")
        (htdocs / "index.php").write_text("<?php // core\n", encoding="utf-8")
    else:
        (htdocs / "index.html").write_text("<h1>hello</h1>\n", encoding="utf-8")
        (htdocs / "css").mkdir()
        (htdocs / "css" / "site.css").write_text("body {}\n", encoding="utf-8")

    db = None
    if with_db and site_type is not SiteType.HTML:
        db = DatabaseCredentials(name="site_db", user="site_user", password="s3cret", host="db")
    return SiteSnapshot(
        url=url,
        type=site_type,
        fs_path=fs_path,
        php_version="8.2",
        db=db,
    )


@pytest.fixture()
def config(tmp_path: Path) -> dict:
    """Config with every external side effect switched off."""
    cfg = merge_config({
        "home": str(tmp_path / "home"),
        "backup_dir": str(tmp_path / "backup"),
        "site": {"runtime_user": "", "runtime_group": "", "db_container": ""},
        "tools": {"required": {}, "auto_install": False},
        "dash": {"api_url": "https://dash.example.test", "retry_delay": 0},
        "remote": {"retention": 7},
    })
    return cfg


@pytest.fixture()
def store(tmp_path: Path) -> FakeStore:
    return FakeStore(tmp_path / "remote")


@pytest.fixture()
def plenty_of_space(monkeypatch):
    monkeypatch.setattr("sitebackup.core.diskspace.free_space", lambda path: 10**12)


WP_PLUGINS_JSON = (
    '[{"name": "akismet", "status": "active", "version": "5.3", "update": "none"}]'
)


def wp_cli_handler(site: SiteSnapshot, seen_query: list | None = None):
    """Shell handler answering the wp-cli calls of metadata collection."""
    answers = [
        ("post list --post_type=page", "3"),
        ("post list", "10"),
        ("comment list", "4"),
        ("config get table_prefix", "wp_"),
        ("db query", "7"),
        ("plugin list --format=count", "5"),
        ("theme list --format=count", "Error: boom"),
        ("user list", "2"),
        ("core version", "6.4.2"),
        ("plugin list --format=json", WP_PLUGINS_JSON),
        ("theme list --format=json", "not json"),
    ]

    def handler(command: str) -> CommandResult:
        if "db query" in command and seen_query is not None:
            seen_query.append((site.htdocs_dir / "query.sql").read_text())
        for needle, answer in answers:
            if needle in command:
                return CommandResult(0, answer + "\n")
        return CommandResult(0, "")

    return handler


def wp_site_manager(site: SiteSnapshot) -> FakeSiteManager:
    """Fake site manager for a WordPress site with a working database."""
    metadata = wp_cli_handler(site)

    def handler(command: str) -> CommandResult:
        if command.startswith("mysqldump"):
            (site.htdocs_dir / f"{site.url}.sql").write_text("-- dump\n")
            return CommandResult(0)
        if command.startswith("mysql "):
            return CommandResult(0, "Database\tSize (Bytes)\nsite_db\t4096\n")
        return metadata(command)

    return FakeSiteManager(site, handler)
