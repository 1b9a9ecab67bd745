"""CLI entry point for sitebackup (site-backup command)."""

import click

from sitebackup import __version__
from sitebackup.cli.backup_cmd import backup_cmd, list_cmd
from sitebackup.cli.restore_cmd import restore_cmd


@click.group()
@click.version_option(version=__version__, prog_name="sitebackup")
def cli() -> None:
    """sitebackup: back up and restore sites to remote storage."""


cli.add_command(backup_cmd)
cli.add_command(restore_cmd)
cli.add_command(list_cmd)


if __name__ == "__main__":
    cli()
