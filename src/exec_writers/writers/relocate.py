"""
exec-writers: relocation into the output tree

File: src/exec_writers/writers/relocate.py

Purpose
- Move a scratch executable to its final path inside an output root and, for
  bare names, create the discoverable top-level symlink.
- Keep a placement ledger so later builds can tell their own earlier output
  apart from files that something else put there.

Functional requirements
- Parent directories are created; the move is a single rename where the
  filesystem allows it.
- Every conflict is detected before anything is moved, so a refused placement
  leaves the tree untouched.
- Sealing records each placed file's SHA-256 and drops write permission.
- Builds into the same root may run in parallel processes: every ledger
  update re-reads the ledger under an exclusive ``flock`` on
  ``placements.json.lock``. No child process runs while the lock is held.

Ledger format (``<root>/.exec-writers/placements.json``)
- ``{"schema_version": 1, "placements": {"<relative path>": entry}}`` where an
  entry is ``{"kind": "file", "sha256": ..., "owner": ...}`` or
  ``{"kind": "symlink", "target": ..., "owner": ...}``. ``owner`` is the
  relative path of the artifact the entry belongs to.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.constants import LEDGER_DIR, LEDGER_FILENAME, PLACEMENT_LEDGER_SCHEMA_VERSION
from exec_writers.domain.models import FinalArtifact
from exec_writers.errors import PlacementError
from exec_writers.utils.fs import atomic_write, is_within, make_read_only, move_into_place
from exec_writers.utils.hashing import sha256_file

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from exec_writers.domain.models import BuildResult, Target


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    kind: str
    owner: str
    sha256: str | None = None
    target: str | None = None

    def to_dict(self) -> dict[str, str]:
        payload = {"kind": self.kind, "owner": self.owner}
        if self.sha256 is not None:
            payload["sha256"] = self.sha256
        if self.target is not None:
            payload["target"] = self.target
        return payload

    @classmethod
    def from_dict(cls, data: object, path: str) -> LedgerEntry:
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected object")
        kind = data.get("kind")
        owner = data.get("owner")
        if kind not in {"file", "symlink"} or not isinstance(owner, str):
            raise ValueError(f"{path}: invalid ledger entry")
        sha256 = data.get("sha256")
        target = data.get("target")
        if kind == "file" and not isinstance(sha256, str):
            raise ValueError(f"{path}: file entries need a sha256")
        if kind == "symlink" and not isinstance(target, str):
            raise ValueError(f"{path}: symlink entries need a target")
        return cls(kind=kind, owner=owner, sha256=sha256, target=target)


class PlacementLedger:
    """Record of every entry this pipeline placed under one output root."""

    def __init__(self, root: Path, entries: dict[str, LedgerEntry] | None = None) -> None:
        self._root = root
        self._entries: dict[str, LedgerEntry] = dict(entries or {})

    @property
    def path(self) -> Path:
        return self._root / LEDGER_DIR / LEDGER_FILENAME

    @classmethod
    def load(cls, root: Path) -> PlacementLedger:
        ledger = cls(root)
        if not ledger.path.exists():
            return ledger
        try:
            raw = json.loads(ledger.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise PlacementError(str(ledger.path), f"placement ledger is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict) or raw.get("schema_version") != PLACEMENT_LEDGER_SCHEMA_VERSION:
            raise PlacementError(str(ledger.path), "unsupported placement ledger schema")
        placements = raw.get("placements", {})
        if not isinstance(placements, dict):
            raise PlacementError(str(ledger.path), "placements must be an object")
        try:
            entries = {
                str(key): LedgerEntry.from_dict(value, f"placements.{key}")
                for key, value in placements.items()
            }
        except ValueError as exc:
            raise PlacementError(str(ledger.path), str(exc)) from exc
        return cls(root, entries)

    @classmethod
    @contextlib.contextmanager
    def locked(cls, root: Path) -> Iterator[PlacementLedger]:
        """Load the ledger under an exclusive lock; the caller saves before leaving."""

        lock_path = root / LEDGER_DIR / f"{LEDGER_FILENAME}.lock"
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with lock_path.open("a+", encoding="utf-8") as lock_handle:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
            try:
                yield cls.load(root)
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    def get(self, relative: PurePosixPath) -> LedgerEntry | None:
        return self._entries.get(relative.as_posix())

    def owned_by(self, owner: PurePosixPath) -> dict[str, LedgerEntry]:
        key = owner.as_posix()
        return {rel: entry for rel, entry in self._entries.items() if entry.owner == key}

    def put(self, relative: PurePosixPath, entry: LedgerEntry) -> None:
        self._entries[relative.as_posix()] = entry

    def discard(self, relative: str) -> None:
        self._entries.pop(relative, None)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "schema_version": PLACEMENT_LEDGER_SCHEMA_VERSION,
            "placements": {key: self._entries[key].to_dict() for key in sorted(self._entries)},
        }
        atomic_write(self.path, json.dumps(payload, indent=2, sort_keys=True) + "\n")


@dataclass(frozen=True, slots=True)
class Placement:
    """A relocated but not yet sealed artifact."""

    root: Path
    real_path: Path
    relative_path: PurePosixPath
    symlink_path: Path | None
    symlink_relative_path: PurePosixPath | None


class Relocator:
    """Place scratch executables inside one output root."""

    def __init__(self, output_root: Path | str, *, logger: Any | None = None) -> None:
        self._root = Path(output_root)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def output_root(self) -> Path:
        return self._root

    def place(self, build: BuildResult, target: Target) -> Placement:
        self._root.mkdir(parents=True, exist_ok=True)
        root = self._root.resolve(strict=True)
        ledger = PlacementLedger.load(root)

        relative = target.final_relative_path
        destination = root.joinpath(*relative.parts)
        link_relative = target.symlink_relative_path
        link_path = None if link_relative is None else root.joinpath(*link_relative.parts)

        self._check_parents(root, destination)
        self._check_destination(destination, relative, ledger)
        link_target = None
        if link_path is not None and link_relative is not None:
            link_target = os.path.relpath(destination, link_path.parent)
            self._check_symlink(link_path, link_relative, ledger)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as exc:
            raise PlacementError(str(destination), f"cannot create parent directory: {exc}") from exc
        if not is_within(destination.parent, root):
            raise PlacementError(str(destination), "parent directory resolves outside the output root")

        move_into_place(build.scratch_path, destination)
        if link_path is not None and link_target is not None:
            _replace_symlink(link_path, link_target)

        placement = Placement(
            root=root,
            real_path=destination,
            relative_path=relative,
            symlink_path=link_path,
            symlink_relative_path=link_relative,
        )
        # ledger entries exist before seal() runs
        with PlacementLedger.locked(root) as current:
            for rel, entry in _entries_for(placement, ()).items():
                current.put(PurePosixPath(rel), entry)
            current.save()

        self._logger.info(
            "relocate.placed",
            artifact=build.leaf_name,
            destination=str(destination),
            symlink=None if link_path is None else str(link_path),
        )
        return placement

    def seal(
        self,
        placement: Placement,
        *,
        companions: Iterable[Path] = (),
        wrapped: bool = False,
    ) -> FinalArtifact:
        """Record the final entries in the ledger and drop write permission.

        Entries an earlier build of the same artifact left behind (such as a
        wrapped program that is no longer wrapped) are removed.
        """

        companions = tuple(companions)
        for file_path in (placement.real_path, *companions):
            make_read_only(file_path)
        owner = placement.relative_path
        current = _entries_for(placement, companions)

        with PlacementLedger.locked(placement.root) as ledger:
            for stale_rel, stale in ledger.owned_by(owner).items():
                if stale_rel in current:
                    continue
                stale_path = placement.root.joinpath(*PurePosixPath(stale_rel).parts)
                if stale.kind == "file":
                    with contextlib.suppress(FileNotFoundError):
                        stale_path.unlink()
                ledger.discard(stale_rel)

            for rel, entry in current.items():
                ledger.put(PurePosixPath(rel), entry)
            ledger.save()

        real_entry = current[owner.as_posix()]
        artifact = FinalArtifact(
            path=placement.symlink_path or placement.real_path,
            real_path=placement.real_path,
            relative_path=placement.relative_path,
            symlink_path=placement.symlink_path,
            sha256=real_entry.sha256 or "",
            wrapped=wrapped,
        )
        self._logger.info(
            "relocate.sealed",
            artifact=placement.real_path.name,
            sha256=artifact.sha256,
            wrapped=wrapped,
        )
        return artifact

    def _check_parents(self, root: Path, destination: Path) -> None:
        current = destination.parent
        while current != root:
            if current.is_symlink() or (current.exists() and not current.is_dir()):
                raise PlacementError(
                    str(destination), f"{current} exists and is not a plain directory"
                )
            current = current.parent

    def _check_destination(
        self,
        destination: Path,
        relative: PurePosixPath,
        ledger: PlacementLedger,
    ) -> None:
        if not os.path.lexists(destination):
            return
        entry = ledger.get(relative)
        if destination.is_symlink() or not destination.is_file():
            raise PlacementError(str(destination), "destination exists and is not a regular file")
        if entry is None or entry.kind != "file":
            raise PlacementError(
                str(destination), "destination exists and was not placed by exec-writers"
            )
        if sha256_file(destination) != entry.sha256:
            raise PlacementError(str(destination), "destination was modified after it was placed")

    def _check_symlink(
        self,
        link_path: Path,
        link_relative: PurePosixPath,
        ledger: PlacementLedger,
    ) -> None:
        if not os.path.lexists(link_path):
            return
        entry = ledger.get(link_relative)
        if not link_path.is_symlink() or entry is None or entry.kind != "symlink":
            raise PlacementError(
                str(link_path), "symlink location exists and was not placed by exec-writers"
            )
        if os.readlink(link_path) != entry.target:
            raise PlacementError(str(link_path), "symlink was retargeted after it was placed")


def _entries_for(placement: Placement, companions: Iterable[Path]) -> dict[str, LedgerEntry]:
    owner = placement.relative_path.as_posix()
    entries: dict[str, LedgerEntry] = {}
    for file_path in (placement.real_path, *companions):
        rel = file_path.relative_to(placement.root).as_posix()
        entries[rel] = LedgerEntry(kind="file", owner=owner, sha256=sha256_file(file_path))
    if placement.symlink_path is not None and placement.symlink_relative_path is not None:
        entries[placement.symlink_relative_path.as_posix()] = LedgerEntry(
            kind="symlink", owner=owner, target=os.readlink(placement.symlink_path)
        )
    return entries


def _replace_symlink(link_path: Path, target: str) -> None:
    temp_link = link_path.with_name(f".{link_path.name}.{os.getpid()}.lnk")
    with contextlib.suppress(FileNotFoundError):
        temp_link.unlink()
    os.symlink(target, temp_link)
    os.replace(temp_link, link_path)


__all__ = ["LedgerEntry", "Placement", "PlacementLedger", "Relocator"]
