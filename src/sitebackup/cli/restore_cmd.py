"""CLI command for restoring a site: site-backup restore."""

from __future__ import annotations

from pathlib import Path

import click

from sitebackup.cli.common import home_option, load_context, verbose_option
from sitebackup.core.errors import BackupError
from sitebackup.engine.restore import RestoreOrchestrator


@click.command("restore")
@click.argument("site")
@click.option("--id", "backup_id", default=None, help="Backup to restore (default: latest).")
@home_option
@verbose_option
def restore_cmd(site: str, backup_id: str | None, home: Path | None, verbose: bool) -> None:
    """Restore SITE from remote storage."""
    config, sites, store = load_context(home, verbose)
    try:
        report = RestoreOrchestrator(config, sites, store).run(site, backup_id=backup_id)
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Restored {site} from backup {report.backup_id}.")
