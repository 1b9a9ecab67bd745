"""Core data models for sitebackup."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

# --- Enums ---


class SiteType(str, Enum):
    HTML = "html"
    PHP = "php"
    WP = "wp"


# --- Backup identifiers ---

BACKUP_ID_DATE = re.compile(r"\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2}")

CONTAINER_WWW = "/var/www/"

COUNT_FIELDS = (
    "post_count",
    "page_count",
    "comment_count",
    "upload_count",
    "plugin_count",
    "theme_count",
    "user_count",
)


def new_backup_id(now: datetime | None = None) -> str:
    """Build a sortable generation ID: ``<epoch>_<YYYY-mm-dd-HH-MM-SS>``."""
    now = now or datetime.now()
    return f"{int(now.timestamp())}_{now:%Y-%m-%d-%H-%M-%S}"


def is_backup_id(name: str) -> bool:
    return bool(BACKUP_ID_DATE.search(name))


# --- Site ---


@dataclass(frozen=True)
class DatabaseCredentials:
    name: str
    user: str
    password: str = field(repr=False)
    host: str


@dataclass(frozen=True)
class SiteSnapshot:
    """Read-only view of a site, as supplied by the site manager."""

    url: str
    type: SiteType
    fs_path: Path
    container_fs_path: str = "/var/www/htdocs"
    php_version: str = ""
    db: DatabaseCredentials | None = None

    @property
    def has_db(self) -> bool:
        return self.db is not None and bool(self.db.name)

    @property
    def app_dir(self) -> Path:
        return self.fs_path / "app"

    @property
    def htdocs_dir(self) -> Path:
        return self.app_dir / "htdocs"

    @property
    def config_dir(self) -> Path:
        return self.fs_path / "config"

    @property
    def relative_content_path(self) -> str:
        """Container content path relative to /var/www/ (e.g. ``htdocs``)."""
        return self.container_fs_path.replace(CONTAINER_WWW, "")

    @property
    def content_dir(self) -> Path:
        """Host path of the directory the container serves."""
        return self.app_dir / self.relative_content_path

    def to_dict(self) -> dict:
        """Serializable form. The database password is never included."""
        db = self.db
        return {
            "site_url": self.url,
            "site_type": self.type.value,
            "site_fs_path": str(self.fs_path),
            "site_container_fs_path": self.container_fs_path,
            "php_version": self.php_version,
            "db_name": db.name if db else "",
            "db_user": db.user if db else "",
            "db_host": db.host if db else "",
        }

    @classmethod
    def from_dict(cls, data: dict) -> SiteSnapshot:
        db = None
        if data.get("db_name"):
            db = DatabaseCredentials(
                name=data["db_name"],
                user=data.get("db_user", ""),
                password=data.get("db_password", ""),
                host=data.get("db_host", ""),
            )
        return cls(
            url=data["site_url"],
            type=SiteType(data["site_type"]),
            fs_path=Path(data["site_fs_path"]),
            container_fs_path=data.get("site_container_fs_path") or "/var/www/htdocs",
            php_version=str(data.get("php_version", "")),
            db=db,
        )


# --- Backup metadata ---


@dataclass
class BackupMetadata:
    """Record persisted with every generation as ``metadata.json``."""

    site_url: str
    site_type: str
    remote_path: str = ""
    db_name: str = ""
    site_container_fs_path: str = ""
    counts: dict[str, str] = field(default_factory=dict)
    wp_version: str = ""
    site: dict = field(default_factory=dict)

    @property
    def has_db(self) -> bool:
        return bool(self.db_name)

    def to_dict(self) -> dict:
        data = dict(self.site)
        data.update({
            "site_url": self.site_url,
            "site_type": self.site_type,
            "db_name": self.db_name,
            "site_container_fs_path": self.site_container_fs_path,
            "remote_path": self.remote_path,
        })
        if self.site_type == SiteType.WP.value:
            data.update(self.counts)
            data["wp_version"] = self.wp_version
        return data

    @classmethod
    def from_dict(cls, data: dict) -> BackupMetadata:
        return cls(
            site_url=data.get("site_url", ""),
            site_type=data.get("site_type", ""),
            remote_path=data.get("remote_path", ""),
            db_name=data.get("db_name") or "",
            site_container_fs_path=data.get("site_container_fs_path", ""),
            counts={k: data[k] for k in COUNT_FIELDS if k in data},
            wp_version=str(data.get("wp_version", "")),
            site=dict(data),
        )

    @classmethod
    def for_site(cls, site: SiteSnapshot, remote_path: str) -> BackupMetadata:
        return cls(
            site_url=site.url,
            site_type=site.type.value,
            remote_path=remote_path,
            db_name=site.db.name if site.db else "",
            site_container_fs_path=site.container_fs_path,
            site=site.to_dict(),
        )
