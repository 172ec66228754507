"""
exec-writers: artifact writer orchestration

File: src/exec_writers/writers/pipeline.py

Purpose
- Run one ArtifactSpec through materialize, build, check, relocate, wrap and
  seal, inside a private scratch directory.

Functional requirements
- Wrapper arguments are validated before any build step runs.
- A failed check or compile leaves the output tree untouched.
- The scratch directory is removed on every exit path.
- Every toolchain path reaches the build steps as an explicit argument.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.constants import (
    DEFAULT_FIXUP_COMMAND,
    DEFAULT_STEP_TIMEOUT_SECONDS,
    DEFAULT_STRIP_COMMAND,
    DEFAULT_WRAPPER_SHELL,
)
from exec_writers.domain.models import (
    ArtifactSpec,
    CheckCommand,
    Compile,
    Content,
    EmbeddedShebang,
    FileRef,
    Inline,
    Shebang,
)
from exec_writers.host import HostCapabilities
from exec_writers.observability.logging import correlation_scope
from exec_writers.sandbox.executor import StepExecutor
from exec_writers.utils.fs import temp_directory
from exec_writers.writers.check_gate import CheckGate
from exec_writers.writers.compile import CompileBuilder
from exec_writers.writers.content import materialize
from exec_writers.writers.relocate import Relocator
from exec_writers.writers.shebang import ShebangBuilder
from exec_writers.writers.wrapper import Wrapper, parse_wrap_args

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from exec_writers.domain.models import BuildResult, FinalArtifact

ContentInput = Content | str | bytes | os.PathLike[str]


def as_content(value: ContentInput) -> Content:
    """``str``/``bytes`` become inline content, path objects become file references."""

    if isinstance(value, (Inline, FileRef)):
        return value
    if isinstance(value, (str, bytes)):
        return Inline(value)
    if isinstance(value, os.PathLike):
        return FileRef(Path(value))
    raise TypeError(f"unsupported content type: {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class ScriptWriterConfig:
    """Settings for an interpreted artifact.

    ``interpreter`` is the full interpreter string placed after ``#!``;
    ``check`` is a command run as ``check <artifact>`` before placement;
    ``wrap_args`` are wrapper arguments applied after placement.
    """

    interpreter: str
    check: CheckCommand | Sequence[str] | None = None
    wrap_args: tuple[str, ...] = ()

    def spec(self, name_or_path: str, content: ContentInput) -> ArtifactSpec:
        return ArtifactSpec.from_name(
            name_or_path,
            as_content(content),
            Shebang(interpreter=self.interpreter, check=CheckCommand.coerce(self.check)),
            wrap_args=self.wrap_args,
        )


@dataclass(frozen=True, slots=True)
class BinWriterConfig:
    """Settings for a compiled artifact.

    ``compile_command`` reads ``$contentPath`` and writes ``$out``;
    ``strip`` removes debug symbols after a successful compile.
    """

    compile_command: str | tuple[str, ...]
    strip: bool = True
    wrap_args: tuple[str, ...] = ()

    def spec(self, name_or_path: str, content: ContentInput) -> ArtifactSpec:
        return ArtifactSpec.from_name(
            name_or_path,
            as_content(content),
            Compile(compile_command=self.compile_command, strip=self.strip),
            wrap_args=self.wrap_args,
        )


class ArtifactWriter:
    """Produce executable artifacts inside one output root."""

    def __init__(
        self,
        output_root: Path | str,
        *,
        executor: StepExecutor | None = None,
        capabilities: HostCapabilities | None = None,
        scratch_root: Path | str | None = None,
        strip_command: Sequence[str] = DEFAULT_STRIP_COMMAND,
        fixup_command: Sequence[str] = DEFAULT_FIXUP_COMMAND,
        wrapper_shell: str = DEFAULT_WRAPPER_SHELL,
        logger: Any | None = None,
    ) -> None:
        self._executor = executor or StepExecutor(default_timeout_seconds=DEFAULT_STEP_TIMEOUT_SECONDS)
        self._capabilities = capabilities if capabilities is not None else HostCapabilities.detect()
        self._scratch_root = Path(scratch_root) if scratch_root else None
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        check_gate = CheckGate(self._executor, logger=self._logger)
        self._shebang = ShebangBuilder(
            capabilities=self._capabilities, check_gate=check_gate, logger=self._logger
        )
        self._compiler = CompileBuilder(
            self._executor,
            capabilities=self._capabilities,
            strip_command=strip_command,
            fixup_command=fixup_command,
            logger=self._logger,
        )
        self._relocator = Relocator(output_root, logger=self._logger)
        self._wrapper = Wrapper(shell=wrapper_shell, logger=self._logger)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        output_root: Path | str | None = None,
        executor: StepExecutor | None = None,
        logger: Any | None = None,
    ) -> ArtifactWriter:
        """Build a writer from a validated config mapping (see ``exec_writers.config``)."""

        paths = config["paths"]
        platform = config["platform"]
        build = config["build"]
        return cls(
            output_root if output_root is not None else paths["output_root"],
            executor=executor
            or StepExecutor(default_timeout_seconds=float(build["step_timeout_seconds"])),
            capabilities=HostCapabilities.resolve(
                interpreter_chaining=platform["interpreter_chaining"],
                post_link_fixup=platform["post_link_fixup"],
            ),
            scratch_root=paths["scratch_dir"] or None,
            strip_command=build["strip_command"],
            fixup_command=build["fixup_command"],
            wrapper_shell=build["wrapper_shell"],
            logger=logger,
        )

    @property
    def output_root(self) -> Path:
        return self._relocator.output_root

    @property
    def capabilities(self) -> HostCapabilities:
        return self._capabilities

    @property
    def scratch_root(self) -> Path | None:
        return self._scratch_root

    def write(self, spec: ArtifactSpec) -> FinalArtifact:
        ops = parse_wrap_args(spec.wrap_args)
        with correlation_scope(artifact=spec.leaf_name), temp_directory(
            "exec-writers-", root=self._scratch_root
        ) as scratch:
            with materialize(spec.content, scratch) as content_path:
                build = self._build(spec, content_path, scratch)
            placement = self._relocator.place(build, spec.target)
            wrap = self._wrapper.wrap(placement.real_path, ops)
            artifact = self._relocator.seal(
                placement,
                companions=() if wrap is None else (wrap.wrapped_program,),
                wrapped=wrap is not None,
            )
        self._logger.info(
            "writer.completed",
            artifact=spec.leaf_name,
            path=str(artifact.path),
            sha256=artifact.sha256,
        )
        return artifact

    def write_script(
        self, name_or_path: str, content: ContentInput, config: ScriptWriterConfig
    ) -> FinalArtifact:
        return self.write(config.spec(name_or_path, content))

    def write_bin(
        self, name_or_path: str, content: ContentInput, config: BinWriterConfig
    ) -> FinalArtifact:
        return self.write(config.spec(name_or_path, content))

    def _build(self, spec: ArtifactSpec, content_path: Path, scratch: Path) -> BuildResult:
        kind = spec.build_kind
        if isinstance(kind, Shebang):
            return self._shebang.build(
                interpreter=kind.interpreter,
                content_path=content_path,
                scratch_dir=scratch,
                leaf_name=spec.leaf_name,
                check=kind.check,
            )
        if isinstance(kind, EmbeddedShebang):
            return self._shebang.build_embedded(
                content_path=content_path,
                scratch_dir=scratch,
                leaf_name=spec.leaf_name,
                check=kind.check,
            )
        if isinstance(kind, Compile):
            return self._compiler.build(
                compile_command=kind.compile_command,
                content_path=content_path,
                scratch_dir=scratch,
                leaf_name=spec.leaf_name,
                strip=kind.strip,
            )
        raise TypeError(f"unsupported build kind: {type(kind).__name__}")


__all__ = [
    "ArtifactWriter",
    "BinWriterConfig",
    "ContentInput",
    "ScriptWriterConfig",
    "as_content",
]
