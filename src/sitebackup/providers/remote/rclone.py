"""rclone-backed remote store with resource-aware transfer tuning."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import psutil

from sitebackup.core.errors import PruneFailure, RemoteTransferFailure, ToolMissing
from sitebackup.core.models import is_backup_id
from sitebackup.core.runner import Runner

log = logging.getLogger(__name__)

MIN_TRANSFERS = 2
MAX_TRANSFERS = 4


@dataclass
class UploadTuning:
    transfers: int
    buffer_mb: int
    s3_chunk_size: str | None = None
    s3_concurrency: int | None = None

    def flags(self) -> list[str]:
        flags: list[str] = []
        if self.s3_chunk_size:
            flags += [
                f"--s3-chunk-size={self.s3_chunk_size}",
                "--s3-upload-concurrency", str(self.s3_concurrency),
            ]
        flags += [
            "--transfers", str(self.transfers),
            "--checkers", str(self.transfers),
            "--buffer-size", f"{self.buffer_mb}M",
        ]
        return flags


def upload_tuning(
    cpu_cores: int,
    available_ram_mb: int,
    *,
    max_buffer_mb: int = 4096,
    s3: bool = False,
    s3_chunk_size: str = "64M",
    max_s3_concurrency: int = 32,
) -> UploadTuning:
    """Derive upload concurrency and buffer size from host resources.

    transfers/checkers = cores // 2 clamped to 2..4; the buffer is the
    available RAM shared between transfers, capped at max_buffer_mb.
    """
    transfers = max(MIN_TRANSFERS, min(cpu_cores // 2, MAX_TRANSFERS))
    buffer_mb = min(available_ram_mb // transfers, max_buffer_mb)
    tuning = UploadTuning(transfers=transfers, buffer_mb=buffer_mb)
    if s3:
        tuning.s3_chunk_size = s3_chunk_size
        tuning.s3_concurrency = min(cpu_cores * 2, max_s3_concurrency)
    return tuning


def download_streams(cpu_cores: int, max_streams: int = 32) -> int:
    """Multi-thread streams for a download: two per core, capped."""
    return max(1, min(cpu_cores * 2, max_streams))


def _cpu_cores() -> int:
    return os.cpu_count() or 1


def _available_ram_mb() -> int:
    return psutil.virtual_memory().available // (1024 * 1024)


class RcloneStore:
    """Remote store that shells out to rclone."""

    def __init__(self, config: dict | None = None, runner: Runner | None = None) -> None:
        config = config or {}
        remote_cfg = config.get("remote", {})
        transfer_cfg = config.get("transfer", {})
        self._base = str(remote_cfg.get("path", "backups:sites")).rstrip("/")
        self._max_buffer_mb = int(transfer_cfg.get("max_buffer_mb", 4096))
        self._max_download_streams = int(transfer_cfg.get("max_download_streams", 32))
        self._max_s3_concurrency = int(transfer_cfg.get("max_s3_concurrency", 32))
        self._s3_chunk_size = str(transfer_cfg.get("s3_chunk_size", "64M"))
        self._runner = runner or Runner()

    @property
    def name(self) -> str:
        return "rclone"

    @property
    def remote_name(self) -> str:
        """The rclone remote, e.g. ``backups`` for ``backups:sites``."""
        return self._base.split(":", 1)[0]

    def site_prefix(self, site_url: str) -> str:
        return f"{self._base}/{site_url}"

    def generation_path(self, site_url: str, backup_id: str) -> str:
        return f"{self.site_prefix(site_url)}/{backup_id}"

    def check(self) -> None:
        result = self._runner.run(["rclone", "listremotes"])
        remotes = result.stdout.split()
        if not result.ok or f"{self.remote_name}:" not in remotes:
            raise ToolMissing(
                f"rclone remote '{self.remote_name}' does not exist. "
                "Please create it using `rclone config`."
            )

    def backend_type(self) -> str:
        """Storage backend of the remote (``s3``, ``drive``, ...)."""
        result = self._runner.run(["rclone", "config", "show", self.remote_name])
        for line in result.stdout.splitlines():
            key, _, value = line.partition("=")
            if key.strip() == "type":
                return value.strip()
        return ""

    def list_generations(self, site_url: str) -> list[str]:
        result = self._runner.run(["rclone", "lsf", "--dirs-only", self.site_prefix(site_url)])
        if not result.ok:
            raise RemoteTransferFailure(
                f"Error listing remote backups: {result.stderr.strip()}"
            )
        names = [line.strip().rstrip("/") for line in result.stdout.splitlines()]
        return sorted((n for n in names if n and is_backup_id(n)), reverse=True)

    def size(self, site_url: str, backup_id: str) -> int:
        path = self.generation_path(site_url, backup_id)
        result = self._runner.run(["rclone", "size", "--json", path])
        if not result.ok:
            raise RemoteTransferFailure(f"Failed to get remote backup size: {path}")
        try:
            return int(json.loads(result.stdout)["bytes"])
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteTransferFailure(f"Unexpected output from rclone size: {e}") from e

    def upload(self, local_dir: Path, site_url: str, backup_id: str) -> str:
        remote = self.generation_path(site_url, backup_id)
        cores = _cpu_cores()
        tuning = upload_tuning(
            cores,
            _available_ram_mb(),
            max_buffer_mb=self._max_buffer_mb,
            s3=self.backend_type() == "s3",
            s3_chunk_size=self._s3_chunk_size,
            max_s3_concurrency=self._max_s3_concurrency,
        )
        log.debug("Upload tuning: %s", tuning)

        cmd = ["rclone", "copy", "-P", *tuning.flags(), str(local_dir), remote]
        result = self._runner.run(cmd, stream=True)
        if not result.ok:
            raise RemoteTransferFailure("Error uploading backup to remote storage.")

        log.info("Backup uploaded to remote storage. Remote path: %s", remote)
        return remote

    def download(self, site_url: str, backup_id: str, local_dir: Path) -> None:
        remote = self.generation_path(site_url, backup_id)
        streams = download_streams(_cpu_cores(), self._max_download_streams)
        cmd = ["rclone", "copy", "-P", "--multi-thread-streams", str(streams), remote, str(local_dir)]
        result = self._runner.run(cmd, stream=True)
        if not result.ok:
            raise RemoteTransferFailure("Error downloading backup from remote storage.")
        log.info("Backup downloaded from remote storage.")

    def purge(self, site_url: str, backup_id: str) -> None:
        remote = self.generation_path(site_url, backup_id)
        result = self._runner.run(["rclone", "purge", remote])
        if not result.ok:
            raise PruneFailure(remote)
        log.debug("Deleted remote generation %s", remote)
