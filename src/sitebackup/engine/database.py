"""MySQL dump and restore, executed inside the site's container."""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from sitebackup.core.errors import BackupError
from sitebackup.core.fileutil import atomic_write, ensure_dir, remove_path
from sitebackup.core.models import CONTAINER_WWW, DatabaseCredentials, SiteSnapshot
from sitebackup.core.runner import Runner
from sitebackup.engine.archive import SiteArchive
from sitebackup.providers.site.base import SiteManager

log = logging.getLogger(__name__)

SQL_DIR = "sql"
_SIZE_QUERY_FILE = "db_size_query.sql"


def _client_args(db: DatabaseCredentials) -> str:
    q = shlex.quote
    return f"--skip-ssl -u {q(db.user)} -p{q(db.password)} -h {q(db.host)}"


def _sql_string(value: str) -> str:
    """Quote value as a MySQL string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "''")
    return f"'{escaped}'"


def sql_filename(site: SiteSnapshot) -> str:
    return f"{site.url}.sql"


class DatabaseAdapter:
    """Dumps and replays a site's database through the site shell.

    Credentials come from the site snapshot and are masked in every log line.
    """

    def __init__(
        self,
        sites: SiteManager,
        runner: Runner | None = None,
        db_container: str = "",
    ) -> None:
        self.sites = sites
        self.runner = runner or Runner()
        self.db_container = db_container

    def _require_db(self, site: SiteSnapshot) -> DatabaseCredentials:
        if site.db is None or not site.db.name:
            raise BackupError(f"Site {site.url} has no database.")
        return site.db

    def size(self, site: SiteSnapshot) -> int:
        """Data + index size of the site's schema in bytes (0 if unknown)."""
        db = self._require_db(site)
        query = (
            "SELECT table_schema AS 'Database', "
            "SUM(data_length + index_length) AS 'Size (Bytes)' "
            "FROM information_schema.TABLES "
            f"WHERE table_schema = {_sql_string(db.name)} "
            "GROUP BY table_schema;"
        )
        query_file = site.htdocs_dir / _SIZE_QUERY_FILE
        atomic_write(query_file, query)
        try:
            result = self.sites.shell(
                site,
                f"mysql {_client_args(db)} {shlex.quote(db.name)} "
                f"< {CONTAINER_WWW}htdocs/{_SIZE_QUERY_FILE}",
                secrets=[db.password],
            )
        finally:
            remove_path(query_file)

        size = 0
        lines = result.stdout.splitlines()
        if len(lines) > 1:
            cols = lines[1].split("\t")
            if len(cols) > 1 and cols[1].strip().isdigit():
                size = int(cols[1].strip())
        log.debug("DB size: %d", size)
        return size

    def flush_privileges(self) -> None:
        """FLUSH PRIVILEGES on the shared DB container, if it is running."""
        if not self.db_container:
            return
        status = self.runner.run(
            ["docker", "inspect", "-f", "{{.State.Status}}", self.db_container]
        )
        if status.stdout.strip() != "running":
            return
        result = self.runner.run([
            "docker", "exec", self.db_container, "bash", "-c",
            'mysql --skip-ssl -uroot -p"$MYSQL_ROOT_PASSWORD" -e "FLUSH PRIVILEGES"',
        ])
        if not result.ok:
            log.warning("Could not flush MySQL privileges: %s", result.stderr.strip())

    def dump(self, site: SiteSnapshot, work_dir: Path, archive: SiteArchive) -> None:
        """Dump the database and merge it into archive as ``sql/<site>.sql``."""
        db = self._require_db(site)
        self.flush_privileges()

        log.info("Backing up database.")
        filename = sql_filename(site)
        command = (
            f"mysqldump {_client_args(db)} --single-transaction "
            f"{shlex.quote(db.name)} > {CONTAINER_WWW}htdocs/{filename}"
        )
        result = self.sites.shell(site, command, secrets=[db.password])
        dumped = site.htdocs_dir / filename
        if not result.ok or not dumped.exists():
            remove_path(dumped)
            raise BackupError(f"Database dump failed: {result.stderr.strip()}")

        sql_dir = ensure_dir(work_dir / SQL_DIR)
        shutil.move(str(dumped), str(sql_dir / filename))
        archive.add_tree(sql_dir, SQL_DIR)
        remove_path(sql_dir)

    def restore(self, site: SiteSnapshot, container_dir: str = SQL_DIR) -> None:
        """Replay ``/var/www/<container_dir>/<site>.sql`` into the site's database."""
        db = self._require_db(site)
        log.info("Restoring database.")
        sql_path = f"{CONTAINER_WWW}{container_dir}/{sql_filename(site)}"
        command = (
            f"mysql {_client_args(db)} {shlex.quote(db.name)} "
            f"< {shlex.quote(sql_path)} 2>/dev/null"
        )
        result = self.sites.shell(site, command, secrets=[db.password])
        if not result.ok:
            raise BackupError(f"Database restore failed for {site.url}.")
