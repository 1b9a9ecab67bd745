"""Backup and restore orchestration."""
