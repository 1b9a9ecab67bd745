"""File system utilities: atomic writes, tree removal and merge, ownership."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

log = logging.getLogger(__name__)

DIR_MODE = 0o755


def ensure_dir(path: Path, mode: int | None = None) -> Path:
    """Create directory (and parents) if it doesn't exist."""
    path.mkdir(parents=True, exist_ok=True)
    if mode is not None:
        path.chmod(mode)
    return path


def atomic_write(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Write content to file atomically via temp file + rename.

    Ensures the file is never partially written on crash.
    """
    ensure_dir(path.parent)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=path.suffix,
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def write_json(path: Path, data: dict | list) -> None:
    atomic_write(path, json.dumps(data, indent=4) + "\n")


def read_json(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree. Missing paths are ignored."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def clear_directory(path: Path) -> None:
    """Remove everything inside path but keep path itself."""
    if not path.is_dir():
        return
    for entry in path.iterdir():
        remove_path(entry)


def merge_tree(src: Path, dst: Path) -> None:
    """Copy src over dst, overwriting files that exist in both."""
    if src.is_dir():
        shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
    elif src.is_file():
        ensure_dir(dst.parent)
        shutil.copy2(src, dst)


def normalize_ownership(path: Path, user: str | None, group: str | None = None) -> None:
    """Recursively chown path to user:group without following symlinks.

    Does nothing when no runtime user is configured.
    """
    if not user or not path.exists():
        return
    import grp
    import pwd

    uid = pwd.getpwnam(user).pw_uid
    gid = grp.getgrnam(group or user).gr_gid

    os.lchown(path, uid, gid)
    if path.is_dir() and not path.is_symlink():
        for root, dirs, files in os.walk(path):
            for name in dirs + files:
                os.lchown(os.path.join(root, name), uid, gid)
