"""Build-step execution with scoped environments, captured output and hard timeouts."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_PASSTHROUGH_ENV_KEYS = ("PATH", "HOME", "TMPDIR")


@dataclass(frozen=True, slots=True)
class StepResult:
    """Normalized result of one child-process invocation."""

    command: tuple[str, ...]
    cwd: Path
    returncode: int | None
    stdout_bytes: bytes
    stderr_bytes: bytes
    timed_out: bool
    duration_ms: float

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def stdout(self) -> str:
        return self.stdout_bytes.decode("utf-8", errors="replace")

    @property
    def stderr(self) -> str:
        return self.stderr_bytes.decode("utf-8", errors="replace")


class CommandRunner(Protocol):
    """Injectable command runner used for deterministic/offline testing."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_seconds: float,
        stdin_bytes: bytes | None = None,
    ) -> StepResult: ...


class SubprocessCommandRunner:
    """Default command runner backed by :class:`subprocess.Popen`.

    Each child starts in its own session so a timeout can terminate the whole
    process group, including grandchildren spawned by ``sh -c``.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_seconds: float,
        stdin_bytes: bytes | None = None,
    ) -> StepResult:
        started = time.perf_counter()
        try:
            process = subprocess.Popen(
                list(command),
                cwd=cwd,
                env=dict(env),
                stdin=subprocess.PIPE if stdin_bytes is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            duration_ms = (time.perf_counter() - started) * 1000.0
            return StepResult(
                command=tuple(command),
                cwd=cwd,
                returncode=127,
                stdout_bytes=b"",
                stderr_bytes=f"{command[0]}: {exc.strerror or exc}\n".encode(),
                timed_out=False,
                duration_ms=duration_ms,
            )

        try:
            stdout, stderr = process.communicate(input=stdin_bytes, timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            stdout, stderr = process.communicate()
            duration_ms = (time.perf_counter() - started) * 1000.0
            return StepResult(
                command=tuple(command),
                cwd=cwd,
                returncode=None,
                stdout_bytes=stdout or b"",
                stderr_bytes=stderr or b"",
                timed_out=True,
                duration_ms=duration_ms,
            )
        except BaseException:
            _kill_process_group(process)
            process.wait()
            raise

        duration_ms = (time.perf_counter() - started) * 1000.0
        return StepResult(
            command=tuple(command),
            cwd=cwd,
            returncode=process.returncode,
            stdout_bytes=stdout or b"",
            stderr_bytes=stderr or b"",
            timed_out=False,
            duration_ms=duration_ms,
        )


class StepExecutor:
    """Execute build-step commands with a minimal, explicit environment.

    By default only ``PATH``, ``HOME`` and ``TMPDIR`` come from the host;
    callers add the variables a step template may reference. Out-of-band
    steps (the content generator) opt into the full host environment.
    """

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        default_timeout_seconds: float = 300.0,
        env_overrides: Mapping[str, str] | None = None,
        inherit_host_env: bool = False,
    ) -> None:
        if default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._runner = runner or SubprocessCommandRunner()
        self._default_timeout_seconds = float(default_timeout_seconds)
        self._env_overrides = dict(env_overrides or {})
        self._inherit_host_env = bool(inherit_host_env)

    @property
    def default_timeout_seconds(self) -> float:
        return self._default_timeout_seconds

    def execute(
        self,
        command: Sequence[str],
        *,
        cwd: Path | str,
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
        stdin_bytes: bytes | None = None,
        inherit_host_env: bool | None = None,
    ) -> StepResult:
        parsed_command = normalize_command(command)
        resolved_cwd = Path(cwd).resolve(strict=True)
        if not resolved_cwd.is_dir():
            raise NotADirectoryError(f"{resolved_cwd!s} is not a directory")
        effective_timeout = (
            self._default_timeout_seconds if timeout_seconds is None else float(timeout_seconds)
        )
        if effective_timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")

        inherit = self._inherit_host_env if inherit_host_env is None else inherit_host_env
        run_env = self._build_environment(env, inherit_host_env=inherit)
        return self._runner.run(
            parsed_command,
            cwd=resolved_cwd,
            env=run_env,
            timeout_seconds=effective_timeout,
            stdin_bytes=stdin_bytes,
        )

    def _build_environment(
        self, env: Mapping[str, str] | None, *, inherit_host_env: bool
    ) -> dict[str, str]:
        if inherit_host_env:
            merged = dict(os.environ)
        else:
            merged = {
                key: os.environ[key] for key in _PASSTHROUGH_ENV_KEYS if os.environ.get(key)
            }
        merged.update(self._env_overrides)
        if env is not None:
            merged.update(env)
        return merged


def normalize_command(command: Sequence[str]) -> tuple[str, ...]:
    if not isinstance(command, (list, tuple)):
        raise ValueError("command must be a sequence of strings")
    normalized = tuple(item for item in command if isinstance(item, str) and item.strip())
    if not normalized:
        raise ValueError("command must not be empty")
    return normalized


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        process.kill()


__all__ = [
    "CommandRunner",
    "StepExecutor",
    "StepResult",
    "SubprocessCommandRunner",
    "normalize_command",
]
