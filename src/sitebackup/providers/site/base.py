"""SiteManager Protocol: the site lifecycle collaborator."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from sitebackup.core.models import SiteSnapshot
from sitebackup.core.runner import CommandResult


@runtime_checkable
class SiteManager(Protocol):
    """Looks up sites and runs commands inside their containers."""

    @property
    def name(self) -> str:
        ...

    def lookup(self, site_url: str) -> SiteSnapshot:
        """Return the site's snapshot. Raises SiteNotFound."""
        ...

    def shell(
        self,
        site: SiteSnapshot,
        command: str,
        secrets: Sequence[str] = (),
    ) -> CommandResult:
        """Run a shell command inside the site's PHP container."""
        ...

    def reload(self, site: SiteSnapshot) -> None:
        """Reload the site's services after a restore."""
        ...

    def enable(self, site: SiteSnapshot, force: bool = True) -> None:
        """Re-enable the site so changed compose overlays take effect."""
        ...
