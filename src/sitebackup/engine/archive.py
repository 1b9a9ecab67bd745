"""Backup archive composition.

Every generation holds up to four artifacts:

- ``<site>.zip``: site files (plus ``sql/`` and ``meta.json`` where relevant)
- ``conf.zip``: nginx (and for PHP sites, php) configuration
- ``docker-compose-custom.yml`` / ``user-docker-compose.zip``: the overlay
- ``metadata.json``: written by the metadata collector

What goes into ``<site>.zip`` depends on the site type, see
:meth:`ArchiveComposer.compose`.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import time
import zipfile
from collections.abc import Callable
from pathlib import Path

from sitebackup.core.errors import BackupError
from sitebackup.core.fileutil import atomic_write, remove_path
from sitebackup.core.models import SiteSnapshot, SiteType

log = logging.getLogger(__name__)

CONF_ARCHIVE = "conf.zip"
META_FILE = "meta.json"
OVERLAY_COMPOSE = "docker-compose-custom.yml"
OVERLAY_DIR = "user-docker-compose"
OVERLAY_ARCHIVE = f"{OVERLAY_DIR}.zip"
UPLOADS = "wp-content/uploads"


class SiteArchive:
    """A zip file built up by successive add steps.

    Adding a member that is already present is a no-op, so steps can be
    re-run over the same archive.
    """

    def __init__(self, path: Path, compresslevel: int = 1) -> None:
        self.path = Path(path)
        self._compresslevel = compresslevel

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def _open(self) -> zipfile.ZipFile:
        mode = "a" if self.exists else "w"
        return zipfile.ZipFile(
            self.path, mode, compression=zipfile.ZIP_DEFLATED,
            compresslevel=self._compresslevel,
        )

    def names(self) -> list[str]:
        if not self.exists:
            return []
        with zipfile.ZipFile(self.path) as zf:
            return zf.namelist()

    def add_file(self, src: Path, arcname: str) -> None:
        with self._open() as zf:
            if arcname not in zf.namelist():
                zf.write(src, arcname)

    def add_tree(
        self,
        src: Path,
        arcname: str = "",
        skip: Callable[[str], bool] | None = None,
    ) -> int:
        """Add the directory tree at src under arcname.

        ``skip`` receives each path relative to src (``/``-separated) and can
        prune files or whole directories. Symlinks inside the tree, to files or
        directories, are stored as links and not followed. Returns the number
        of members written.
        """
        src = Path(src)
        prefix = arcname.strip("/")
        added = 0
        with self._open() as zf:
            existing = set(zf.namelist())
            for root, dirs, files in os.walk(src):
                rel_root = Path(root).relative_to(src).as_posix()
                rel_root = "" if rel_root == "." else rel_root

                kept_dirs = []
                for d in sorted(dirs):
                    rel = f"{rel_root}/{d}" if rel_root else d
                    if skip and skip(rel):
                        continue
                    full = os.path.join(root, d)
                    if os.path.islink(full):
                        name = _join(prefix, rel)
                        if name not in existing:
                            _write_symlink(zf, full, name)
                            existing.add(name)
                            added += 1
                        continue
                    kept_dirs.append(d)
                    name = _join(prefix, rel) + "/"
                    if name not in existing:
                        zf.write(full, name)
                        existing.add(name)
                        added += 1
                dirs[:] = kept_dirs

                for f in sorted(files):
                    rel = f"{rel_root}/{f}" if rel_root else f
                    if skip and skip(rel):
                        continue
                    full = os.path.join(root, f)
                    name = _join(prefix, rel)
                    if name in existing:
                        continue
                    if os.path.islink(full):
                        _write_symlink(zf, full, name)
                    else:
                        zf.write(full, name)
                    existing.add(name)
                    added += 1
        return added

    def extract(
        self,
        dest: Path,
        include: Callable[[str], bool] | None = None,
    ) -> list[str]:
        """Extract members (all, or those ``include`` accepts) into dest.

        Unix permission bits and symlinks stored in the archive are restored.
        """
        with zipfile.ZipFile(self.path) as zf:
            members = [i for i in zf.infolist() if include is None or include(i.filename)]
            _extract_members(zf, members, Path(dest))
        return [i.filename for i in members]

    def extract_member(self, name: str, dest: Path) -> bool:
        """Extract a single member if present. Returns whether it existed."""
        with zipfile.ZipFile(self.path) as zf:
            try:
                info = zf.getinfo(name)
            except KeyError:
                return False
            _extract_members(zf, [info], Path(dest))
        return True


def _join(prefix: str, rel: str) -> str:
    return f"{prefix}/{rel}" if prefix else rel


def _write_symlink(zf: zipfile.ZipFile, path: str, arcname: str) -> None:
    """Store the link itself: S_IFLNK in the mode bits, the target as content."""
    st = os.lstat(path)
    info = zipfile.ZipInfo(arcname, date_time=time.localtime(st.st_mtime)[:6])
    info.create_system = 3
    info.external_attr = (stat.S_IFLNK | 0o777) << 16
    zf.writestr(info, os.readlink(path))


def _extract_members(zf: zipfile.ZipFile, members: list[zipfile.ZipInfo], dest: Path) -> None:
    modes: list[tuple[str, int]] = []
    for info in members:
        mode = info.external_attr >> 16
        if stat.S_ISLNK(mode):
            _extract_symlink(zf, info, dest)
            continue
        path = zf.extract(info, dest)
        if stat.S_IMODE(mode):
            modes.append((path, stat.S_IMODE(mode)))
    # children before parents, so read-only directories do not block chmod
    for path, mode in reversed(modes):
        os.chmod(path, mode)


def _extract_symlink(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path) -> None:
    rel = Path(info.filename.rstrip("/"))
    if rel.is_absolute() or ".." in rel.parts:
        log.warning("Skipping unsafe symlink member %s", info.filename)
        return
    link = dest / rel
    link.parent.mkdir(parents=True, exist_ok=True)
    if link.is_symlink() or link.exists():
        remove_path(link)
    os.symlink(zf.read(info).decode("utf-8"), link)


def is_uploads_member(name: str) -> bool:
    return name == f"{UPLOADS}/" or name.startswith(f"{UPLOADS}/")


class ArchiveComposer:
    """Builds the archives of one backup generation in ``work_dir``."""

    def __init__(self, site: SiteSnapshot, work_dir: Path) -> None:
        self.site = site
        self.work_dir = Path(work_dir)
        self.archive = SiteArchive(self.work_dir / f"{site.url}.zip")

    def compose(self, dump_database: Callable[[SiteArchive], None] | None = None) -> SiteArchive:
        """Write every artifact for the site's type.

        ``dump_database`` is called with the site archive for sites that have
        a database; it is expected to merge ``sql/`` into it.
        """
        match self.site.type:
            case SiteType.HTML:
                self.archive_site_dir()
                self.archive_overlay()
                self.archive_config(include_php=False)
            case SiteType.PHP:
                self.archive_overlay()
                self.archive_config(include_php=True)
                self._dump(dump_database)
                self.archive_site_dir()
            case SiteType.WP:
                self.archive_overlay()
                self.archive_config(include_php=True)
                self._dump(dump_database)
                self.archive_wp_content()
            case _:
                raise BackupError(f"Backup is not supported for site type {self.site.type!r}.")
        return self.archive

    def _dump(self, dump_database: Callable[[SiteArchive], None] | None) -> None:
        if self.site.has_db and dump_database is not None:
            dump_database(self.archive)

    def archive_site_dir(self) -> SiteArchive:
        """Archive the whole ``app`` tree of the site."""
        log.info("Backing up site files. This may take some time.")
        self.archive.add_tree(self.site.app_dir)
        return self.archive

    def archive_wp_content(self) -> SiteArchive:
        """Archive wp-config.php, wp-content (minus uploads), meta.json, then uploads."""
        log.info("Backing up site files. This may take some time.")
        site_dir = self.site.content_dir

        if not (site_dir / "wp-content").is_dir():
            if (site_dir / "current" / "wp-content").is_dir():
                wp_cli_yml = site_dir / "wp-cli.yml"
                if not wp_cli_yml.exists():
                    atomic_write(wp_cli_yml, "path: current/")
                site_dir = site_dir / "current"
            else:
                log.warning("wp-content directory not found in the site.")
                log.info("Backing up complete site directory.")
                return self.archive_site_dir()

        wp_config = site_dir.parent / "wp-config.php"
        if wp_config.is_file():
            self.archive.add_file(wp_config, "wp-config.php")
        else:
            log.warning("wp-config.php not found at %s", wp_config)

        meta_file = self.work_dir / META_FILE
        if meta_file.exists():
            self.archive.add_file(meta_file, META_FILE)
            meta_file.unlink()

        self.archive.add_tree(
            site_dir / "wp-content",
            "wp-content",
            skip=lambda rel: rel == "uploads" or rel.startswith("uploads/"),
        )
        self.archive_uploads(site_dir)
        return self.archive

    def archive_uploads(self, site_dir: Path) -> int:
        """Add wp-content/uploads, following it if it is a symlink."""
        uploads = site_dir / "wp-content" / "uploads"
        if not uploads.exists():
            return 0
        if uploads.is_symlink():
            log.debug("uploads is a symlink to %s", uploads.resolve())
        return self.archive.add_tree(uploads.resolve(), UPLOADS)

    def archive_config(self, include_php: bool) -> SiteArchive:
        conf = SiteArchive(self.work_dir / CONF_ARCHIVE)
        log.info("Backing up nginx configuration.")
        _add_if_dir(conf, self.site.config_dir / "nginx", "nginx")
        if include_php:
            log.info("Backing up php configuration.")
            _add_if_dir(conf, self.site.config_dir / "php", "php")
        return conf

    def archive_overlay(self) -> list[Path]:
        """Copy custom compose overlays into the working directory."""
        written: list[Path] = []
        compose_file = self.site.fs_path / OVERLAY_COMPOSE
        if compose_file.is_file():
            shutil.copy2(compose_file, self.work_dir / OVERLAY_COMPOSE)
            written.append(self.work_dir / OVERLAY_COMPOSE)

        compose_dir = self.site.fs_path / OVERLAY_DIR
        if compose_dir.is_dir():
            overlay = SiteArchive(self.work_dir / OVERLAY_ARCHIVE)
            overlay.add_tree(compose_dir)
            written.append(overlay.path)
        return written


def _add_if_dir(archive: SiteArchive, src: Path, arcname: str) -> None:
    if src.is_dir():
        archive.add_tree(src, arcname)
    else:
        log.debug("No %s directory at %s", arcname, src)

