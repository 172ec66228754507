"""
exec-writers: filesystem utilities

File: src/exec_writers/utils/fs.py

Purpose
- Provide safe, minimal filesystem helpers for atomic writes, scoped scratch
  directories and atomic moves into an output tree.

Functional requirements
- Atomic writes use temp files in the destination directory and replace in a single step.
- Moves use a single rename where the filesystem allows it; cross-device moves
  copy into a sibling temp file first so the destination never shows partial data.
- Scratch directories are removed on every exit path.

Non-functional requirements
- Standard library only.
"""

from __future__ import annotations

import contextlib
import errno
import os
import shutil
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]

_EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
_WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH

__all__ = [
    "atomic_write",
    "is_within",
    "make_executable",
    "make_read_only",
    "move_into_place",
    "private_file",
    "temp_directory",
]


@contextmanager
def _sibling_temp(target: Path) -> Iterator[Path]:
    """Yield a hidden temp path next to ``target``; it is removed unless renamed away."""

    fd, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    os.close(fd)
    temp_path = Path(name)
    try:
        yield temp_path
    finally:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Write ``data`` to a synced sibling temp file, then rename it over ``path``.

    The parent directory must already exist.
    """

    target = Path(path)
    parent = target.parent.resolve(strict=True)
    if not parent.is_dir():
        raise NotADirectoryError(f"{parent!s} is not a directory")

    payload = data if isinstance(data, bytes) else data.encode(encoding)
    with _sibling_temp(parent / target.name) as temp_path:
        with temp_path.open("wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    _fsync_directory(parent)


def private_file(directory: PathLike, data: bytes, *, prefix: str = "content-") -> Path:
    """Write ``data`` verbatim to a new ``0600`` file inside ``directory``."""

    fd, name = tempfile.mkstemp(prefix=prefix, dir=str(directory))
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
    except Exception:
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)
        raise
    return path


def move_into_place(source: PathLike, destination: PathLike) -> Path:
    """Move ``source`` to ``destination``, creating parent directories.

    One ``os.replace`` when both paths share a filesystem. Across devices the
    file is copied to a hidden sibling of ``destination`` and renamed over it,
    so the destination never shows partial data.
    """

    src = Path(source)
    dst = Path(destination)
    dst.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(src, dst)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        with _sibling_temp(dst) as temp_path:
            shutil.copy2(src, temp_path)
            os.replace(temp_path, dst)
        src.unlink()
    _fsync_directory(dst.parent)
    return dst


def make_executable(path: PathLike) -> None:
    """Add execute permission wherever read permission is granted."""

    target = Path(path)
    mode = target.stat().st_mode
    readable = mode & (stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
    target.chmod(stat.S_IMODE(mode) | stat.S_IXUSR | (readable >> 2 & _EXECUTABLE_BITS))


def make_read_only(path: PathLike) -> None:
    """Drop all write permission bits from ``path`` (symlinks are left alone)."""

    target = Path(path)
    if target.is_symlink():
        return
    mode = stat.S_IMODE(target.stat().st_mode)
    target.chmod(mode & ~_WRITE_BITS)


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` is within resolved ``parent``."""

    try:
        resolved_parent = Path(parent).resolve(strict=True)
    except FileNotFoundError:
        return False
    if not resolved_parent.is_dir():
        return False

    try:
        resolved_child = Path(child).resolve(strict=True)
    except FileNotFoundError:
        return False

    return _is_relative_to(resolved_child, resolved_parent)


@contextmanager
def temp_directory(prefix: str = "exec-writers-", *, root: PathLike | None = None) -> Iterator[Path]:
    """Yield a private temporary directory path and clean it up on exit."""

    base = None if root is None else str(root)
    if base is not None:
        Path(base).mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix=prefix, dir=base) as tmp:
        yield Path(tmp)


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
