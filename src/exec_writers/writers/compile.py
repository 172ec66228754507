"""Compiled artifacts: run the compile command, then optional strip and fixup passes."""

from __future__ import annotations

import string
from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.constants import (
    DEFAULT_FIXUP_COMMAND,
    DEFAULT_STRIP_COMMAND,
    SCRATCH_OUTPUT_NAME,
)
from exec_writers.domain.models import BuildResult
from exec_writers.errors import CompileFailedError
from exec_writers.host import HostCapabilities
from exec_writers.utils.fs import make_executable
from exec_writers.writers.elf import debug_sections

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from exec_writers.sandbox.executor import StepExecutor, StepResult

_SHELL = "/bin/sh"


def render_compile_command(
    compile_command: str | Sequence[str],
    *,
    content_path: Path,
    out_path: Path,
) -> tuple[str, ...]:
    """Turn a compile command into an argv.

    Strings run through ``/bin/sh -c`` and read ``$contentPath`` / ``$out``
    from the environment. Sequences get both placeholders substituted in
    every argument; other ``$`` references are left untouched.
    """

    if isinstance(compile_command, str):
        return (_SHELL, "-c", compile_command)
    mapping = {"contentPath": str(content_path), "out": str(out_path)}
    return tuple(string.Template(arg).safe_substitute(mapping) for arg in compile_command)


class CompileBuilder:
    """Produce a raw compiled executable in a scratch directory.

    Steps run in order: compile, strip (when requested), post-link fixup
    (when the host needs it). The first non-zero exit aborts the build with
    :class:`CompileFailedError`; nothing is retried.
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        capabilities: HostCapabilities | None = None,
        strip_command: Sequence[str] = DEFAULT_STRIP_COMMAND,
        fixup_command: Sequence[str] = DEFAULT_FIXUP_COMMAND,
        timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._executor = executor
        self._capabilities = capabilities if capabilities is not None else HostCapabilities.detect()
        self._strip_command = tuple(strip_command)
        self._fixup_command = tuple(fixup_command)
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def build(
        self,
        *,
        compile_command: str | Sequence[str],
        content_path: Path,
        scratch_dir: Path,
        leaf_name: str,
        strip: bool = True,
    ) -> BuildResult:
        out_dir = scratch_dir / SCRATCH_OUTPUT_NAME
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / leaf_name

        argv = render_compile_command(compile_command, content_path=content_path, out_path=out_path)
        result = self._executor.execute(
            argv,
            cwd=scratch_dir,
            timeout_seconds=self._timeout_seconds,
            env={"contentPath": str(content_path), "out": str(out_path)},
        )
        self._raise_on_failure(result, step="compile")
        if not out_path.is_file():
            raise CompileFailedError(
                command=argv,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr + f"compile command did not produce {out_path}\n",
                step="compile",
            )
        self._logger.debug("compile.succeeded", command=list(argv), duration_ms=result.duration_ms)

        if strip:
            self._run_step(self._strip_command, out_path, scratch_dir, step="strip")
            presence = debug_sections(out_path)
            if presence.has_debug_sections:
                self._logger.warning(
                    "compile.debug_sections_survived_strip",
                    artifact=leaf_name,
                    sections=list(presence.debug_sections),
                )

        if self._capabilities.requires_post_link_fixup:
            self._run_step(self._fixup_command, out_path, scratch_dir, step="fixup")

        make_executable(out_path)
        return BuildResult(scratch_path=out_path, leaf_name=leaf_name)

    def _run_step(self, command: tuple[str, ...], out_path: Path, cwd: Path, *, step: str) -> None:
        argv = (*command, str(out_path))
        result = self._executor.execute(argv, cwd=cwd, timeout_seconds=self._timeout_seconds)
        self._raise_on_failure(result, step=step)
        self._logger.debug(f"compile.{step}", command=list(argv))

    def _raise_on_failure(self, result: StepResult, *, step: str) -> None:
        if result.succeeded:
            return
        self._logger.info(
            "compile.failed",
            step=step,
            command=list(result.command),
            returncode=result.returncode,
            timed_out=result.timed_out,
        )
        raise CompileFailedError(
            command=result.command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
            step=step,
        )


__all__ = ["CompileBuilder", "render_compile_command"]
