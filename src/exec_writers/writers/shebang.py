"""Interpreted artifacts: synthesize the ``#!`` line, append content, check, chmod."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.constants import SCRATCH_OUTPUT_NAME, SHEBANG_MARKER
from exec_writers.domain.models import BuildResult
from exec_writers.errors import UnsupportedInterpreterChainError
from exec_writers.host import HostCapabilities
from exec_writers.utils.fs import make_executable

if TYPE_CHECKING:
    from exec_writers.domain.models import CheckCommand
    from exec_writers.writers.check_gate import CheckGate


def interpreter_executable(interpreter: str) -> str:
    """First whitespace-delimited token of an interpreter string."""

    parts = interpreter.split()
    if not parts:
        raise ValueError("interpreter must not be empty")
    return parts[0]


def is_script(path: str | Path) -> bool:
    """Return ``True`` when ``path`` is a readable file starting with ``#!``."""

    try:
        with Path(path).open("rb") as handle:
            return handle.read(len(SHEBANG_MARKER)) == SHEBANG_MARKER
    except OSError:
        return False


def read_interpreter_line(path: str | Path) -> str:
    """Return a script's own interpreter line without ``#!`` or leading whitespace."""

    with Path(path).open("rb") as handle:
        first_line = handle.readline()
    text = first_line.decode("utf-8", errors="surrogateescape").rstrip("\r\n")
    if not text.startswith("#!"):
        raise ValueError(f"{path} does not start with '#!'")
    return text[2:].lstrip()


def build_interpreter_line(
    interpreter: str,
    capabilities: HostCapabilities,
    *,
    logger: Any | None = None,
) -> str:
    """Compose the shebang line for ``interpreter`` on this host.

    When the host cannot use a script as an interpreter and ``interpreter``
    is one, the interpreter's own interpreter line is placed in front of it:
    ``#!<its interpreter line> <interpreter>``. Only one level is supported.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    if not capabilities.requires_interpreter_chaining:
        return "#!" + interpreter

    executable = interpreter_executable(interpreter)
    if not is_script(executable):
        return "#!" + interpreter

    wrapper_line = read_interpreter_line(executable)
    if not wrapper_line.strip():
        raise UnsupportedInterpreterChainError(interpreter, "<empty interpreter line>")
    discovered = interpreter_executable(wrapper_line)
    if is_script(discovered):
        raise UnsupportedInterpreterChainError(interpreter, discovered)

    line = f"#!{wrapper_line} {interpreter}"
    log.info("shebang.chained", interpreter=interpreter, discovered=discovered, line=line)
    return line


class ShebangBuilder:
    """Produce a raw interpreted executable in a scratch directory."""

    def __init__(
        self,
        *,
        capabilities: HostCapabilities | None = None,
        check_gate: CheckGate | None = None,
        logger: Any | None = None,
    ) -> None:
        self._capabilities = capabilities if capabilities is not None else HostCapabilities.detect()
        self._check_gate = check_gate
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def build(
        self,
        *,
        interpreter: str,
        content_path: Path,
        scratch_dir: Path,
        leaf_name: str,
        check: CheckCommand | None = None,
    ) -> BuildResult:
        line = build_interpreter_line(interpreter, self._capabilities, logger=self._logger)
        payload = line.encode("utf-8", errors="surrogateescape") + b"\n" + content_path.read_bytes()
        return self._finish(payload, scratch_dir=scratch_dir, leaf_name=leaf_name, check=check)

    def build_embedded(
        self,
        *,
        content_path: Path,
        scratch_dir: Path,
        leaf_name: str,
        check: CheckCommand | None = None,
    ) -> BuildResult:
        """Content that already carries its preamble is written verbatim."""

        return self._finish(
            content_path.read_bytes(), scratch_dir=scratch_dir, leaf_name=leaf_name, check=check
        )

    def _finish(
        self,
        payload: bytes,
        *,
        scratch_dir: Path,
        leaf_name: str,
        check: CheckCommand | None,
    ) -> BuildResult:
        out_dir = scratch_dir / SCRATCH_OUTPUT_NAME
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / leaf_name
        out_path.write_bytes(payload)

        if check is not None:
            if self._check_gate is None:
                raise RuntimeError("a check command was given but no CheckGate is configured")
            self._check_gate.run(check, out_path)

        make_executable(out_path)
        return BuildResult(scratch_path=out_path, leaf_name=leaf_name)


__all__ = [
    "ShebangBuilder",
    "build_interpreter_line",
    "interpreter_executable",
    "is_script",
    "read_interpreter_line",
]
