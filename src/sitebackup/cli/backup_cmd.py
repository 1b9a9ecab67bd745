"""CLI commands for taking backups: site-backup backup / list."""

from __future__ import annotations

from pathlib import Path

import click

from sitebackup.cli.common import home_option, load_context, verbose_option
from sitebackup.core.errors import BackupError
from sitebackup.engine.backup import BackupOrchestrator


def _echo_backups(site_url: str, backups: list[str]) -> None:
    if not backups:
        click.echo(f"No backups found for {site_url}.")
        return
    click.echo(f"Available backups for {site_url}:")
    for backup_id in backups:
        click.echo(f"  {backup_id}")


@click.command("backup")
@click.argument("site")
@click.option("--list", "list_only", is_flag=True, help="List remote backups and exit.")
@click.option(
    "--dash-auth",
    default=None,
    metavar="BACKUP_ID:TOKEN",
    help="Report the outcome to Dash with this backup id and verification token.",
)
@home_option
@verbose_option
def backup_cmd(
    site: str, list_only: bool, dash_auth: str | None, home: Path | None, verbose: bool,
) -> None:
    """Back up SITE to remote storage."""
    config, sites, store = load_context(home, verbose)
    orchestrator = BackupOrchestrator(config, sites, store)

    try:
        if list_only:
            _echo_backups(site, orchestrator.list_backups(site))
            return
        report = orchestrator.run(site, dash_auth=dash_auth)
    except BackupError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Backup {report.backup_id} of {site} completed.")
    if report.remote_path:
        click.echo(f"Remote path: {report.remote_path}")
    if report.retention and report.retention.purged:
        click.echo(f"Removed {len(report.retention.purged)} old backup(s).")
    if report.dash_error:
        click.echo(f"Warning: {report.dash_error}", err=True)


@click.command("list")
@click.argument("site")
@home_option
@verbose_option
def list_cmd(site: str, home: Path | None, verbose: bool) -> None:
    """List remote backups of SITE, newest first."""
    config, sites, store = load_context(home, verbose)
    try:
        backups = BackupOrchestrator(config, sites, store).list_backups(site)
    except BackupError as e:
        raise click.ClickException(str(e)) from e
    _echo_backups(site, backups)
