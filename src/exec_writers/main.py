"""Executable CLI entrypoint for ``exec_writers``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from exec_writers.errors import (
    CheckFailedError,
    CompileFailedError,
    GenerationFailedError,
    HashMismatchError,
    InvalidNameError,
    PlacementError,
    UnsupportedInterpreterChainError,
    WrapperArgumentError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    BUILD_REJECTED = 1
    CONFIG_ERROR = 2
    GENERATION_FAILED = 3
    INTERNAL_ERROR = 4


_REJECTED_TYPES: tuple[type[BaseException], ...] = (
    CheckFailedError,
    CompileFailedError,
    HashMismatchError,
    PlacementError,
)
_CALLER_ERROR_TYPES: tuple[type[BaseException], ...] = (
    InvalidNameError,
    WrapperArgumentError,
    UnsupportedInterpreterChainError,
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m exec_writers`` and the console script."""

    try:
        from exec_writers.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.INTERNAL_ERROR)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def route_exception(exc: BaseException) -> ExitCode:
    """Map an exception (or anything in its cause chain) to an exit code."""

    config_error_types = _load_config_error_types()
    for item in _iter_exception_chain(exc):
        if isinstance(item, _REJECTED_TYPES):
            return ExitCode.BUILD_REJECTED
        if isinstance(item, GenerationFailedError):
            return ExitCode.GENERATION_FAILED
        if isinstance(item, _CALLER_ERROR_TYPES + config_error_types):
            return ExitCode.CONFIG_ERROR
        if isinstance(item, (FileNotFoundError, NotADirectoryError, PermissionError, ValueError)):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {0, 1, 2, 3, 4}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _load_config_error_types() -> tuple[type[BaseException], ...]:
    from exec_writers.config.loader import ConfigLoadError
    from exec_writers.config.schema import ConfigValidationError

    return (ConfigLoadError, ConfigValidationError)


def _iter_exception_chain(exc: BaseException) -> list[BaseException]:
    seen: set[int] = set()
    items: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None:
        marker = id(current)
        if marker in seen:
            break
        seen.add(marker)
        items.append(current)
        if current.__cause__ is not None:
            current = current.__cause__
            continue
        if current.__context__ is not None and not current.__suppress_context__:
            current = current.__context__
            continue
        break
    return items


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    _write_stderr(f"error: {str(exc).strip() or exc.__class__.__name__}")


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "route_exception"]
