"""Tests for sitebackup.providers.registry."""

import pytest

from sitebackup.providers.registry import ProviderEntry, ProviderRegistry, registry
from sitebackup.providers.remote.base import RemoteStore
from sitebackup.providers.remote.rclone import RcloneStore
from sitebackup.providers.site.base import SiteManager
from sitebackup.providers.site.ee import EESiteManager


class _DummyProvider:
    def __init__(self, config: dict | None = None, **kwargs):
        self.config = config
        self.kwargs = kwargs


class TestProviderRegistry:
    def test_register_and_get(self):
        reg = ProviderRegistry()
        reg.register("site", "dummy", _DummyProvider)

        instance = reg.get("site", "dummy", {"key": "val"}, runner="r")
        assert isinstance(instance, _DummyProvider)
        assert instance.config == {"key": "val"}
        assert instance.kwargs == {"runner": "r"}

    def test_get_unknown_family(self):
        reg = ProviderRegistry()
        with pytest.raises(KeyError, match="Unknown provider family"):
            reg.get("nonexistent", "x")

    def test_get_unknown_provider(self):
        reg = ProviderRegistry()
        reg.register("remote", "dummy", _DummyProvider)
        with pytest.raises(KeyError):
            reg.get("remote", "nonexistent")

    def test_list_family(self):
        reg = ProviderRegistry()
        reg.register("remote", "a", _DummyProvider)
        reg.register("remote", "b", _DummyProvider)
        reg.register("site", "c", _DummyProvider)

        entries = reg.list_family("remote")
        assert len(entries) == 2
        assert all(isinstance(e, ProviderEntry) for e in entries)
        assert {e.name for e in entries} == {"a", "b"}


class TestBuiltins:
    def test_rclone_registered(self):
        store = registry.get("remote", "rclone", {})
        assert isinstance(store, RcloneStore)
        assert isinstance(store, RemoteStore)

    def test_ee_registered(self):
        sites = registry.get("site", "ee", {})
        assert isinstance(sites, EESiteManager)
        assert isinstance(sites, SiteManager)
