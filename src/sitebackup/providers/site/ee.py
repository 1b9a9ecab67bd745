"""Site manager backed by the ``ee`` command-line tool."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from sitebackup.core.errors import SiteNotFound
from sitebackup.core.models import SiteSnapshot
from sitebackup.core.runner import CommandResult, Runner

log = logging.getLogger(__name__)


class EESiteManager:
    """Delegates site lookup and in-container execution to ``ee``."""

    def __init__(self, config: dict | None = None, runner: Runner | None = None) -> None:
        config = config or {}
        self._command = config.get("site", {}).get("command", "ee")
        self._runner = runner or Runner()

    @property
    def name(self) -> str:
        return "ee"

    def lookup(self, site_url: str) -> SiteSnapshot:
        result = self._runner.run([self._command, "site", "info", site_url, "--format=json"])
        if not result.ok:
            raise SiteNotFound(f"Site {site_url} does not exist: {result.stderr.strip()}")
        try:
            data = json.loads(result.stdout)
            return SiteSnapshot.from_dict(data)
        except (ValueError, KeyError) as e:
            raise SiteNotFound(f"Could not read site info for {site_url}: {e}") from e

    def shell(
        self,
        site: SiteSnapshot,
        command: str,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        return self._runner.run(
            [self._command, "shell", site.url, "--skip-tty", f"--command={command}"],
            secrets=secrets,
        )

    def reload(self, site: SiteSnapshot) -> None:
        result = self._runner.run([self._command, "site", "reload", site.url], stream=True)
        if not result.ok:
            log.warning("Site reload exited with code %d", result.returncode)

    def enable(self, site: SiteSnapshot, force: bool = True) -> None:
        cmd = [self._command, "site", "enable", site.url]
        if force:
            cmd.append("--force")
        result = self._runner.run(cmd, stream=True)
        if not result.ok:
            log.warning("Site enable exited with code %d", result.returncode)
