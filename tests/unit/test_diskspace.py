"""Tests for sitebackup.core.diskspace."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from sitebackup.core.diskspace import (
    check_space,
    directory_size,
    format_bytes,
    free_space,
    shortfall_message,
)
from sitebackup.core.errors import InsufficientSpace, NotFound


class TestDirectorySize:
    def test_sums_nested_files(self, tmp_path: Path):
        (tmp_path / "a.txt").write_bytes(b"x" * 100)
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b.txt").write_bytes(b"y" * 50)
        assert directory_size(tmp_path) == 150

    def test_missing_path_raises(self, tmp_path: Path):
        with pytest.raises(NotFound):
            directory_size(tmp_path / "missing")

    def test_symlinks_not_counted(self, tmp_path: Path):
        (tmp_path / "real.bin").write_bytes(b"z" * 10)
        os.symlink(tmp_path / "real.bin", tmp_path / "link.bin")
        assert directory_size(tmp_path) == 10

    def test_empty_directory(self, tmp_path: Path):
        assert directory_size(tmp_path) == 0


class TestFreeSpace:
    def test_uses_psutil(self, tmp_path: Path):
        with patch("psutil.disk_usage") as mock_usage:
            mock_usage.return_value.free = 12345
            assert free_space(tmp_path) == 12345
        mock_usage.assert_called_once_with(str(tmp_path))


class TestFormatBytes:
    def test_bytes(self):
        assert format_bytes(512) == "512 B"

    def test_kilobytes(self):
        assert format_bytes(1536) == "1.5 KB"

    def test_gigabytes(self):
        assert format_bytes(3 * 1024**3) == "3 GB"

    def test_negative_clamped(self):
        assert format_bytes(-5) == "0 B"


class TestShortfall:
    def test_exact_message(self):
        message = shortfall_message("take backup", 2048, 1024)
        assert message == (
            "Not enough disk space to take backup.\n"
            "Required: 2 KB (2,048 bytes)\n"
            "Available: 1 KB (1,024 bytes)\n"
            "Additional space needed: 1 KB (1,024 bytes)\n"
            "Please free up some space and try again."
        )

    def test_check_space_raises_with_amounts(self):
        with pytest.raises(InsufficientSpace) as exc_info:
            check_space("restore backup", 5000, 3000)
        assert exc_info.value.required == 5000
        assert exc_info.value.available == 3000
        assert exc_info.value.additional == 2000
        assert "restore backup" in str(exc_info.value)

    def test_check_space_passes_when_equal(self):
        check_space("take backup", 1000, 1000)
