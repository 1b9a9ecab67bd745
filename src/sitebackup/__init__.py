"""sitebackup: backup and restore of containerised websites to remote storage."""

__version__ = "0.4.0"
