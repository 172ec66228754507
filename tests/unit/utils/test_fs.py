"""Unit tests for filesystem helpers."""

from __future__ import annotations

import errno
import os
import stat
from pathlib import Path

import pytest

from exec_writers.utils import fs


def test_atomic_write_replaces_without_leftovers(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    fs.atomic_write(target, "one")
    fs.atomic_write(target, b"two")

    assert target.read_bytes() == b"two"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["file.txt"]


def test_atomic_write_requires_existing_parent(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        fs.atomic_write(tmp_path / "missing" / "file.txt", "x")


def test_move_into_place_creates_parents(tmp_path: Path) -> None:
    source = tmp_path / "scratch" / "out"
    source.parent.mkdir()
    source.write_bytes(b"payload")
    destination = tmp_path / "root" / "deep" / "tool"

    assert fs.move_into_place(source, destination) == destination
    assert destination.read_bytes() == b"payload"
    assert not source.exists()


def test_move_into_place_falls_back_to_copy_across_devices(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    source = tmp_path / "src"
    source.write_bytes(b"payload")
    destination = tmp_path / "dest" / "tool"
    real_replace = os.replace
    calls: list[tuple[str, str]] = []

    def fake_replace(src: os.PathLike[str] | str, dst: os.PathLike[str] | str) -> None:
        calls.append((str(src), str(dst)))
        if Path(src) == source:
            raise OSError(errno.EXDEV, "cross-device link")
        real_replace(src, dst)

    monkeypatch.setattr(fs.os, "replace", fake_replace)

    fs.move_into_place(source, destination)

    assert destination.read_bytes() == b"payload"
    assert not source.exists()
    assert len(calls) == 2
    assert sorted(p.name for p in destination.parent.iterdir()) == ["tool"]


def test_permission_helpers(tmp_path: Path) -> None:
    path = tmp_path / "tool"
    path.write_text("x")
    path.chmod(0o644)

    fs.make_executable(path)
    assert stat.S_IMODE(path.stat().st_mode) == 0o755

    fs.make_read_only(path)
    assert stat.S_IMODE(path.stat().st_mode) == 0o555


def test_private_file_is_owner_only(tmp_path: Path) -> None:
    path = fs.private_file(tmp_path, b"secret")
    assert path.read_bytes() == b"secret"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_is_within(tmp_path: Path) -> None:
    inner = tmp_path / "a" / "b"
    inner.mkdir(parents=True)

    assert fs.is_within(inner, tmp_path)
    assert not fs.is_within(tmp_path, inner)
    assert not fs.is_within(tmp_path / "missing", tmp_path)


def test_temp_directory_is_removed(tmp_path: Path) -> None:
    with fs.temp_directory("t-", root=tmp_path / "scratch") as scratch:
        (scratch / "file").write_text("x")
        assert scratch.parent == tmp_path / "scratch"
    assert not scratch.exists()
