"""Dash status-service callbacks.

A backup started with ``--dash-auth <backup-id>:<verify-token>`` is tracked by
the Dash service. Exactly one outcome is reported for it:

- ``on_ee_backup_success`` once the generation is uploaded, carrying content
  counters and the remote path;
- ``on_ee_backup_failure`` if the process exits before the backup completed.
  An exit guard registered when the session starts takes care of this, so a
  crashed run is never left "in flight" on the Dash side.

When the success callback cannot be delivered the fresh generation is purged
again, since Dash would otherwise never learn about it.
"""

from __future__ import annotations

import atexit
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from sitebackup.core.errors import ConfigError, PruneFailure
from sitebackup.core.retention import RetentionResult, run_retention

if TYPE_CHECKING:
    from sitebackup.providers.remote.base import RemoteStore

log = logging.getLogger(__name__)

_METHOD_BASE = "easydash.easydash.doctype.site_backup.site_backup"
SUCCESS_ENDPOINT = f"{_METHOD_BASE}.on_ee_backup_success"
FAILURE_ENDPOINT = f"{_METHOD_BASE}.on_ee_backup_failure"

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 300.0
DEFAULT_TIMEOUT = 30.0


class CallbackOutcome(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED_FINAL = "failed_final"


@dataclass(frozen=True)
class DashAuth:
    backup_id: str
    verify_token: str = field(repr=False)

    @classmethod
    def parse(cls, value: str) -> DashAuth:
        """Parse ``backup-id:verification-token``."""
        backup_id, sep, token = (value or "").partition(":")
        if not sep or not backup_id or not token:
            raise ConfigError(
                "Invalid --dash-auth format. Expected: backup-id:backup-verification-token"
            )
        return cls(backup_id=backup_id, verify_token=token)


@dataclass
class DashSession:
    """State shared between the backup run and its exit guard."""

    site_url: str
    auth: DashAuth
    outcome: CallbackOutcome = CallbackOutcome.PENDING
    backup_id: str | None = None  # remote generation created by this run
    remote_path: str | None = None

    @property
    def completed(self) -> bool:
        return self.outcome is not CallbackOutcome.PENDING


def sanitize_count(value: object) -> int:
    """Counters from wp-cli may be '-' or garbage; those become 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return 0


def success_metadata(metadata: dict) -> dict:
    return {
        "post_count": sanitize_count(metadata.get("post_count", 0)),
        "theme_count": sanitize_count(metadata.get("theme_count", 0)),
        "user_count": sanitize_count(metadata.get("user_count", 0)),
        "plugin_count": sanitize_count(metadata.get("plugin_count", 0)),
        "wp_version": metadata.get("wp_version", ""),
        "comment_count": sanitize_count(metadata.get("comment_count", 0)),
        "page_count": sanitize_count(metadata.get("page_count", 0)),
        "upload_count": sanitize_count(metadata.get("upload_count", 0)),
        "site_type": metadata.get("site_type") or "html",
        "remote_path": metadata.get("remote_path", ""),
    }


class DashClient:
    """POSTs backup outcomes to the Dash API, retrying transient failures."""

    def __init__(
        self,
        api_url: str,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_url:
            raise ConfigError(
                "dash.api_url is not configured. Please set it in config.yaml."
            )
        self.api_url = api_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> DashClient:
        dash_cfg = config.get("dash", {})
        return cls(
            dash_cfg.get("api_url", ""),
            max_retries=int(dash_cfg.get("max_retries", DEFAULT_MAX_RETRIES)),
            retry_delay=float(dash_cfg.get("retry_delay", DEFAULT_RETRY_DELAY)),
            timeout=float(dash_cfg.get("timeout", DEFAULT_TIMEOUT)),
            **kwargs,
        )

    def send_success(self, session: DashSession, metadata: dict) -> bool:
        log.debug("Sending success callback for Dash backup %s", session.auth.backup_id)
        payload = {
            "site": session.site_url,
            "backup": session.auth.backup_id,
            "verify": session.auth.verify_token,
            "metadata": success_metadata(metadata),
        }
        return self._post(f"{self.api_url}/{SUCCESS_ENDPOINT}", payload)

    def send_failure(self, session: DashSession) -> bool:
        log.debug("Sending failure callback for Dash backup %s", session.auth.backup_id)
        payload = {
            "site": session.site_url,
            "backup": session.auth.backup_id,
            "verify": session.auth.verify_token,
        }
        return self._post(f"{self.api_url}/{FAILURE_ENDPOINT}", payload)

    def _post(self, endpoint: str, payload: dict) -> bool:
        """POST with retries on 5xx and connection errors. Returns delivery status."""
        max_attempts = self.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            status = 0
            error = ""
            body = "No response received"
            try:
                resp = httpx.post(
                    endpoint,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
                status = resp.status_code
                body = resp.text
            except (httpx.TransportError, OSError) as e:
                error = str(e) or e.__class__.__name__

            if not error and 200 <= status < 300:
                log.info("Dash callback sent successfully.")
                log.debug("Dash response: %s", body)
                return True

            server_error = 500 <= status < 600
            connection_error = bool(error) or status == 0

            if (server_error or connection_error) and attempt < max_attempts:
                if server_error:
                    log.warning(
                        "Dash callback failed with HTTP %d (attempt %d/%d). Retrying in %ss...",
                        status, attempt, max_attempts, self.retry_delay,
                    )
                else:
                    log.warning(
                        "Dash connection error: %s (attempt %d/%d). Retrying in %ss...",
                        error or "No HTTP response received", attempt, max_attempts,
                        self.retry_delay,
                    )
                self._sleep(self.retry_delay)
                continue

            if connection_error:
                log.warning(
                    "Failed to send Dash callback after %d retries: %s",
                    self.max_retries, error or "No HTTP response received",
                )
            elif server_error:
                log.warning(
                    "Dash callback failed after %d retries with HTTP %d. Response: %s",
                    self.max_retries, status, body,
                )
            else:
                log.warning("Dash callback returned HTTP %d. Response: %s", status, body)
            return False

        return False


def install_exit_guard(
    session: DashSession,
    client: DashClient,
    register: Callable[[Callable[[], None]], object] = atexit.register,
) -> Callable[[], None]:
    """Send a failure callback at process exit unless the backup completed."""

    def guard() -> None:
        if session.completed:
            return
        log.warning("Backup did not complete, notifying Dash of the failure.")
        client.send_failure(session)
        session.outcome = CallbackOutcome.FAILED_FINAL

    register(guard)
    return guard


class DashReporter:
    """Reports a finished backup and applies the follow-up action.

    Delivered: prune old generations. Not delivered: purge the new one.
    """

    def __init__(self, client: DashClient, store: RemoteStore, retention: int) -> None:
        self.client = client
        self.store = store
        self.retention = retention

    def report_success(
        self, session: DashSession, metadata: dict,
    ) -> RetentionResult | None:
        delivered = self.client.send_success(session, metadata)
        if delivered:
            session.outcome = CallbackOutcome.SUCCEEDED
            return run_retention(self.store, session.site_url, self.retention)

        session.outcome = CallbackOutcome.FAILED_FINAL
        self.rollback(session)
        return None

    def rollback(self, session: DashSession) -> bool:
        """Purge the generation this run uploaded. Returns True if it is gone."""
        if not session.backup_id:
            log.warning("Cannot rollback backup: backup path not found.")
            return False

        path = session.remote_path or self.store.generation_path(
            session.site_url, session.backup_id
        )
        log.warning("Dash callback failed. Rolling back newly uploaded backup...")
        log.info("Deleting unregistered backup: %s", path)
        try:
            self.store.purge(session.site_url, session.backup_id)
        except PruneFailure:
            log.warning(
                "Failed to delete backup from remote storage. Please manually delete: %s",
                path,
            )
            return False
        log.info("Successfully removed unregistered backup from remote storage.")
        return True
