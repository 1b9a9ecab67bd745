"""Tests for sitebackup.core.retention."""

from pathlib import Path

from conftest import FakeStore

from sitebackup.core.errors import RemoteTransferFailure
from sitebackup.core.retention import plan_retention, run_retention


def _ids(n: int) -> list[str]:
    """n generation IDs, newest first."""
    ids = [f"{1700000000 + i}_2024-01-{i + 1:02d}-00-00-00" for i in range(n)]
    return sorted(ids, reverse=True)


class TestPlanRetention:
    def test_nothing_to_do_at_threshold(self):
        assert plan_retention(_ids(8), keep=7) == []

    def test_eleven_keeps_seven(self):
        ids = _ids(11)
        planned = plan_retention(ids, keep=7)
        assert len(planned) == 4
        assert planned == list(reversed(ids[7:]))

    def test_oldest_first(self):
        ids = _ids(10)
        planned = plan_retention(ids, keep=2)
        assert planned[0] == ids[-1]
        assert planned[-1] == ids[2]


class TestRunRetention:
    def test_purges_oldest_four(self, tmp_path: Path):
        ids = _ids(11)
        store = FakeStore(tmp_path, generations=ids)

        result = run_retention(store, "example.com", keep=7)

        assert result.purged == list(reversed(ids[7:]))
        assert store.list_generations("example.com") == ids[:7]
        assert result.errors == []

    def test_purge_failure_is_tolerated(self, tmp_path: Path):
        ids = _ids(11)
        store = FakeStore(tmp_path, generations=ids)
        store.fail_purge = {ids[8]}

        result = run_retention(store, "example.com", keep=7)

        assert result.errors == [ids[8]]
        assert len(result.purged) == 3
        assert result.planned == 4

    def test_listing_failure_is_reported(self, tmp_path: Path):
        store = FakeStore(tmp_path)

        def broken(site_url):
            raise RemoteTransferFailure("listing failed")

        store.list_generations = broken
        result = run_retention(store, "example.com")
        assert result.purged == []
        assert result.errors == ["listing failed"]
