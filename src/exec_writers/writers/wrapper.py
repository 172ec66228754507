"""Environment/argument wrapping of a placed executable via a POSIX shell shim."""

from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.constants import DEFAULT_WRAPPER_SHELL, WRAPPED_PREFIX, WRAPPED_SUFFIX
from exec_writers.errors import WrapperArgumentError
from exec_writers.utils.fs import atomic_write

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

_VAR_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# flag -> number of operands
_ARITY: dict[str, int] = {
    "--set": 2,
    "--set-default": 2,
    "--unset": 1,
    "--prefix": 3,
    "--suffix": 3,
    "--prefix-each": 3,
    "--suffix-each": 3,
    "--add-flags": 1,
    "--append-flags": 1,
    "--chdir": 1,
    "--run": 1,
}
_VAR_FLAGS = frozenset(
    {"--set", "--set-default", "--unset", "--prefix", "--suffix", "--prefix-each", "--suffix-each"}
)


@dataclass(frozen=True, slots=True)
class WrapOp:
    flag: str
    operands: tuple[str, ...]


def parse_wrap_args(args: Sequence[str]) -> tuple[WrapOp, ...]:
    """Validate wrapper arguments and group them with their operands."""

    ops: list[WrapOp] = []
    index = 0
    while index < len(args):
        flag = args[index]
        arity = _ARITY.get(flag)
        if arity is None:
            raise WrapperArgumentError(f"unknown wrapper argument: {flag!r}")
        operands = tuple(args[index + 1 : index + 1 + arity])
        if len(operands) != arity:
            raise WrapperArgumentError(
                f"{flag} expects {arity} argument(s), got {len(operands)}"
            )
        if flag in _VAR_FLAGS and _VAR_NAME.fullmatch(operands[0]) is None:
            raise WrapperArgumentError(f"{flag}: invalid environment variable name {operands[0]!r}")
        ops.append(WrapOp(flag=flag, operands=operands))
        index += 1 + arity
    return tuple(ops)


def wrapped_program_name(leaf_name: str) -> str:
    return f"{WRAPPED_PREFIX}{leaf_name}{WRAPPED_SUFFIX}"


def render_shim(ops: Sequence[WrapOp], program: Path, *, shell: str = DEFAULT_WRAPPER_SHELL) -> str:
    """Render the shell shim that applies ``ops`` and execs ``program``."""

    q = shlex.quote
    lines = [f"#!{shell}"]
    leading: list[str] = []
    trailing: list[str] = []

    for op in ops:
        flag, operands = op.flag, op.operands
        if flag == "--set":
            var, value = operands
            lines.append(f"export {var}={q(value)}")
        elif flag == "--set-default":
            var, value = operands
            lines.append(f'if [ -z "${{{var}+x}}" ]; then export {var}={q(value)}; fi')
        elif flag == "--unset":
            lines.append(f"unset {operands[0]}")
        elif flag in {"--prefix", "--prefix-each"}:
            var, sep, value = operands
            values = value.split() if flag == "--prefix-each" else [value]
            for item in values:
                lines.append(f'{var}={q(item)}${{{var}:+{q(sep)}}}"${var}"')
            lines.append(f"export {var}")
        elif flag in {"--suffix", "--suffix-each"}:
            var, sep, value = operands
            values = value.split() if flag == "--suffix-each" else [value]
            for item in values:
                lines.append(f'{var}=${{{var}:+"${var}"{q(sep)}}}{q(item)}')
            lines.append(f"export {var}")
        elif flag == "--add-flags":
            leading.extend(q(item) for item in shlex.split(operands[0]))
        elif flag == "--append-flags":
            trailing.extend(q(item) for item in shlex.split(operands[0]))
        elif flag == "--chdir":
            lines.append(f"cd {q(operands[0])} || exit 1")
        elif flag == "--run":
            lines.append(operands[0])

    exec_line = ["exec", q(str(program)), *leading, '"$@"', *trailing]
    lines.append(" ".join(exec_line))
    return "\n".join(lines) + "\n"


@dataclass(frozen=True, slots=True)
class WrapResult:
    shim_path: Path
    wrapped_program: Path


class Wrapper:
    """Rename the real program aside and put an environment-setting shim in its place.

    The real program's bytes are never touched; only its name changes.
    """

    def __init__(self, *, shell: str = DEFAULT_WRAPPER_SHELL, logger: Any | None = None) -> None:
        self._shell = shell
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def wrap(self, real_path: Path, ops: Sequence[WrapOp]) -> WrapResult | None:
        if not ops:
            return None

        wrapped = real_path.with_name(wrapped_program_name(real_path.name))
        os.replace(real_path, wrapped)
        atomic_write(real_path, render_shim(ops, wrapped, shell=self._shell))
        real_path.chmod(0o755)

        self._logger.info(
            "wrapper.wrapped",
            artifact=real_path.name,
            wrapped_program=str(wrapped),
            operations=[op.flag for op in ops],
        )
        return WrapResult(shim_path=real_path, wrapped_program=wrapped)


__all__ = [
    "WrapOp",
    "WrapResult",
    "Wrapper",
    "parse_wrap_args",
    "render_shim",
    "wrapped_program_name",
]
