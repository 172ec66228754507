"""Frozen domain models for artifact specs, build kinds and placed artifacts."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, NoReturn

from exec_writers.constants import (
    BARE_NAME_PATTERN,
    BARE_NAME_SUBTREE,
    LEDGER_DIR,
)
from exec_writers.errors import InvalidNameError

if TYPE_CHECKING:
    from collections.abc import Sequence

_RESERVED_BARE_NAMES = frozenset({".", "..", str(BARE_NAME_SUBTREE), str(LEDGER_DIR)})


class GenerationState(StrEnum):
    PENDING = "pending"
    GENERATING = "generating"
    VERIFYING = "verifying"
    SEALED = "sealed"
    REJECTED = "rejected"
    FAILED = "failed"


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_command(value: object, path: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        _fail(path, f"expected array of strings, got {type(value).__name__}")
    parsed: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item:
            _fail(f"{path}[{index}]", "expected non-empty string")
        parsed.append(item)
    if not parsed:
        _fail(path, "must not be empty")
    return tuple(parsed)


def _as_str_args(value: object, path: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        _fail(path, f"expected array of strings, got {type(value).__name__}")
    for index, item in enumerate(value):
        if not isinstance(item, str):
            _fail(f"{path}[{index}]", f"expected string, got {type(item).__name__}")
    return tuple(value)


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BareName:
    """A bare artifact name, discoverable at the top of the output root.

    The real file lives at ``bin/<name>``; a relative symlink ``<name>``
    points at it.
    """

    name: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidNameError(str(self.name), "name must be a non-empty string")
        if BARE_NAME_PATTERN.fullmatch(self.name) is None:
            raise InvalidNameError(
                self.name,
                "bare names may only contain letters, digits, '.', '_' and '-' "
                "and must not start with '-'",
            )
        if self.name in _RESERVED_BARE_NAMES:
            raise InvalidNameError(self.name, "name is reserved by the output tree layout")

    @property
    def explicit_path(self) -> bool:
        return False

    @property
    def leaf_name(self) -> str:
        return self.name

    @property
    def final_relative_path(self) -> PurePosixPath:
        return BARE_NAME_SUBTREE / self.name

    @property
    def symlink_relative_path(self) -> PurePosixPath | None:
        return PurePosixPath(self.name)


@dataclass(frozen=True, slots=True)
class ExplicitPath:
    """An absolute-style path placed verbatim under the output root."""

    path: str

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path.startswith("/"):
            raise InvalidNameError(str(self.path), "explicit paths must begin with '/'")
        if "\x00" in self.path:
            raise InvalidNameError(self.path, "path must not contain NUL bytes")
        segments = self.path[1:].split("/")
        if segments[-1] == "":
            raise InvalidNameError(self.path, "path must end with a file name")
        for segment in segments:
            if segment == "":
                raise InvalidNameError(self.path, "path must not contain empty segments")
            if segment in {".", ".."}:
                raise InvalidNameError(self.path, f"path must not contain {segment!r} segments")
        if segments[0] == str(LEDGER_DIR):
            raise InvalidNameError(self.path, "path is reserved by the output tree layout")

    @property
    def explicit_path(self) -> bool:
        return True

    @property
    def leaf_name(self) -> str:
        return self.final_relative_path.name

    @property
    def final_relative_path(self) -> PurePosixPath:
        return PurePosixPath(self.path[1:])

    @property
    def symlink_relative_path(self) -> PurePosixPath | None:
        return None


Target = BareName | ExplicitPath


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Inline:
    """Literal content. ``str`` is encoded as UTF-8, ``bytes`` pass through."""

    text: str | bytes

    def __post_init__(self) -> None:
        if not isinstance(self.text, (str, bytes)):
            _fail("Inline.text", f"expected str or bytes, got {type(self.text).__name__}")

    def as_bytes(self) -> bytes:
        return self.text if isinstance(self.text, bytes) else self.text.encode("utf-8")


@dataclass(frozen=True, slots=True)
class FileRef:
    """Reference to an existing file used as content without copying."""

    path: Path

    def __post_init__(self) -> None:
        if not isinstance(self.path, (str, os.PathLike)):
            _fail("FileRef.path", f"expected path, got {type(self.path).__name__}")
        object.__setattr__(self, "path", Path(self.path))


Content = Inline | FileRef


# ---------------------------------------------------------------------------
# Build kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CheckCommand:
    """A validation command; the artifact path is appended as the sole positional argument."""

    command: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "command", _as_command(self.command, "CheckCommand.command"))

    @classmethod
    def coerce(cls, value: CheckCommand | Sequence[str] | None) -> CheckCommand | None:
        if value is None or isinstance(value, CheckCommand):
            return value
        return cls(tuple(value))


@dataclass(frozen=True, slots=True)
class Shebang:
    """Interpreted artifact: ``#!<interpreter>`` followed by the content."""

    interpreter: str
    check: CheckCommand | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.interpreter, str) or not self.interpreter.strip():
            _fail("Shebang.interpreter", "must be a non-empty string")
        if "\n" in self.interpreter:
            _fail("Shebang.interpreter", "must not contain newlines")
        object.__setattr__(self, "check", CheckCommand.coerce(self.check))


@dataclass(frozen=True, slots=True)
class EmbeddedShebang:
    """Content that already carries its own ``#!`` preamble."""

    check: CheckCommand | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "check", CheckCommand.coerce(self.check))


@dataclass(frozen=True, slots=True)
class Compile:
    """Compiled artifact produced by a caller-provided command.

    A ``str`` command runs through ``/bin/sh -c`` with ``contentPath`` and
    ``out`` in its environment. A sequence command has ``$contentPath`` and
    ``$out`` substituted in each argument.
    """

    compile_command: str | tuple[str, ...]
    strip: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.compile_command, str):
            if not self.compile_command.strip():
                _fail("Compile.compile_command", "must not be empty")
        else:
            object.__setattr__(
                self,
                "compile_command",
                _as_command(self.compile_command, "Compile.compile_command"),
            )
        if not isinstance(self.strip, bool):
            _fail("Compile.strip", f"expected boolean, got {type(self.strip).__name__}")


BuildKind = Shebang | EmbeddedShebang | Compile


# ---------------------------------------------------------------------------
# Specs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ArtifactSpec:
    """Everything needed to produce one executable artifact."""

    target: Target
    content: Content
    build_kind: BuildKind
    wrap_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.target, (BareName, ExplicitPath)):
            _fail("ArtifactSpec.target", f"expected BareName or ExplicitPath, got {self.target!r}")
        if not isinstance(self.content, (Inline, FileRef)):
            _fail("ArtifactSpec.content", f"expected Inline or FileRef, got {self.content!r}")
        if not isinstance(self.build_kind, (Shebang, EmbeddedShebang, Compile)):
            _fail("ArtifactSpec.build_kind", f"unsupported build kind {self.build_kind!r}")
        object.__setattr__(self, "wrap_args", _as_str_args(self.wrap_args, "ArtifactSpec.wrap_args"))

    @classmethod
    def from_name(
        cls,
        name_or_path: str,
        content: Content,
        build_kind: BuildKind,
        wrap_args: Sequence[str] = (),
    ) -> ArtifactSpec:
        """Resolve ``name_or_path`` once and build the spec around the resulting target."""

        from exec_writers.writers.names import resolve_name

        return cls(
            target=resolve_name(name_or_path),
            content=content,
            build_kind=build_kind,
            wrap_args=tuple(wrap_args),
        )

    @property
    def leaf_name(self) -> str:
        return self.target.leaf_name


@dataclass(frozen=True, slots=True)
class BuildResult:
    """A raw executable sitting in a scratch directory, not yet placed."""

    scratch_path: Path
    leaf_name: str


@dataclass(frozen=True, slots=True)
class FinalArtifact:
    """A placed, sealed artifact inside an output root.

    ``path`` is the discoverable entry (the symlink for bare names);
    ``real_path`` is the regular file that was written.
    """

    path: Path
    real_path: Path
    relative_path: PurePosixPath
    symlink_path: Path | None
    sha256: str
    wrapped: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "real_path": str(self.real_path),
            "relative_path": self.relative_path.as_posix(),
            "symlink_path": None if self.symlink_path is None else str(self.symlink_path),
            "sha256": self.sha256,
            "wrapped": self.wrapped,
        }


@dataclass(frozen=True, slots=True)
class GeneratedHash:
    """SRI hash of generated content, computed after the generator ran."""

    sri: str

    def __post_init__(self) -> None:
        if not isinstance(self.sri, str) or not self.sri.startswith("sha256-"):
            _fail("GeneratedHash.sri", "must be an SRI sha256 hash")

    def __str__(self) -> str:
        return self.sri


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Payload handed to the external generator as JSON on stdin."""

    name: str
    prompt: str
    model: str
    host: str
    port: int
    timeout_seconds: float
    system_prompt: str
    fallback_interpreter: str
    options: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "prompt": self.prompt,
            "model": self.model,
            "host": self.host,
            "port": self.port,
            "timeout_seconds": self.timeout_seconds,
            "system_prompt": self.system_prompt,
            "fallback_interpreter": self.fallback_interpreter,
            "options": dict(self.options),
        }


__all__ = [
    "ArtifactSpec",
    "BareName",
    "BuildKind",
    "BuildResult",
    "CheckCommand",
    "Compile",
    "Content",
    "EmbeddedShebang",
    "ExplicitPath",
    "FileRef",
    "FinalArtifact",
    "GeneratedHash",
    "GenerationRequest",
    "GenerationState",
    "Inline",
    "Shebang",
    "Target",
]
