"""Shared fixtures for offline unit tests."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pytest

from exec_writers.host import HostCapabilities
from exec_writers.sandbox.executor import StepExecutor, StepResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path


@dataclass
class RecordedCall:
    command: tuple[str, ...]
    cwd: Path
    env: dict[str, str]
    timeout_seconds: float
    stdin_bytes: bytes | None


@dataclass
class FakeRunner:
    """CommandRunner double: records calls and answers from a script of handlers."""

    handler: Callable[[RecordedCall], StepResult] | None = None
    calls: list[RecordedCall] = field(default_factory=list)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        timeout_seconds: float,
        stdin_bytes: bytes | None = None,
    ) -> StepResult:
        call = RecordedCall(tuple(command), cwd, dict(env), timeout_seconds, stdin_bytes)
        self.calls.append(call)
        if self.handler is not None:
            return self.handler(call)
        return result_for(call)


def result_for(
    call: RecordedCall,
    *,
    returncode: int | None = 0,
    stdout: bytes = b"",
    stderr: bytes = b"",
    timed_out: bool = False,
) -> StepResult:
    return StepResult(
        command=call.command,
        cwd=call.cwd,
        returncode=returncode,
        stdout_bytes=stdout,
        stderr_bytes=stderr,
        timed_out=timed_out,
        duration_ms=1.0,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_executor(fake_runner: FakeRunner) -> StepExecutor:
    return StepExecutor(runner=fake_runner, default_timeout_seconds=5.0)


@pytest.fixture
def linux_host() -> HostCapabilities:
    return HostCapabilities(requires_interpreter_chaining=False, requires_post_link_fixup=False)


@pytest.fixture
def chaining_host() -> HostCapabilities:
    return HostCapabilities(requires_interpreter_chaining=True, requires_post_link_fixup=False)


@pytest.fixture
def step_result() -> Callable[..., StepResult]:
    """Factory building a StepResult for a recorded call."""

    return result_for
