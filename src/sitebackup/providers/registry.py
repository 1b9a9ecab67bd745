"""Central registry for provider types (site managers, remote stores)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

log = logging.getLogger(__name__)


@dataclass
class ProviderEntry:
    """Metadata about a registered provider."""

    family: str  # "site", "remote"
    name: str  # "ee", "rclone"
    cls: type


class ProviderRegistry:
    """Central registry for all provider types."""

    def __init__(self) -> None:
        self._providers: dict[str, dict[str, ProviderEntry]] = {}

    def register(self, family: str, name: str, cls: type) -> None:
        """Register a provider class under a family."""
        self._providers.setdefault(family, {})[name] = ProviderEntry(
            family=family, name=name, cls=cls
        )
        log.debug("Registered provider: %s/%s", family, name)

    def get(self, family: str, name: str, config: dict | None = None, **kwargs) -> object:
        """Instantiate a provider by family and name."""
        fam = self._providers.get(family)
        if fam is None:
            raise KeyError(f"Unknown provider family: {family!r}")
        entry = fam.get(name)
        if entry is None:
            raise KeyError(f"Unknown provider: {family}/{name!r}")
        return entry.cls(config, **kwargs)

    def list_family(self, family: str) -> list[ProviderEntry]:
        """List all providers in a family."""
        return list(self._providers.get(family, {}).values())


def _register_builtins(reg: ProviderRegistry) -> None:
    from sitebackup.providers.remote.rclone import RcloneStore
    from sitebackup.providers.site.ee import EESiteManager

    reg.register("site", "ee", EESiteManager)
    reg.register("remote", "rclone", RcloneStore)


# Global singleton
registry = ProviderRegistry()
_register_builtins(registry)
