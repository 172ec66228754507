"""
exec-writers: error taxonomy

Every failure a build can surface to its caller. Errors that originate in a
child process carry the full captured diagnostic text; none of them is retried
internally, retry decisions belong to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class WriterError(RuntimeError):
    """Base error for artifact writer failures."""


class InvalidNameError(WriterError, ValueError):
    """Raised when a bare name or explicit path does not satisfy the name grammar."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"invalid artifact name {name!r}: {reason}")


class _CommandFailure(WriterError):
    """Shared shape for failures carrying a child process' captured output."""

    stage = "command"

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int | None,
        stdout: str,
        stderr: str,
        timed_out: bool = False,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            message = f"{self.stage} timed out: {' '.join(self.command)}"
        else:
            message = f"{self.stage} failed ({returncode}): {' '.join(self.command)}"
        detail = self.output.strip()
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)

    @property
    def output(self) -> str:
        """Captured stdout followed by stderr, verbatim."""

        if self.stdout and self.stderr:
            separator = "" if self.stdout.endswith("\n") else "\n"
            return f"{self.stdout}{separator}{self.stderr}"
        return self.stdout or self.stderr


class CheckFailedError(_CommandFailure):
    """Raised when a check command rejects a scratch artifact."""

    stage = "check"


class CompileFailedError(_CommandFailure):
    """Raised when a compile, strip or fixup step exits non-zero."""

    stage = "compile"

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int | None,
        stdout: str,
        stderr: str,
        timed_out: bool = False,
        step: str = "compile",
    ) -> None:
        self.step = step
        self.stage = step
        super().__init__(
            command=command,
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )


class GenerationFailedError(_CommandFailure):
    """Raised when the external generator crashes, times out or prints nothing."""

    stage = "generator"

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int | None,
        stdout: str,
        stderr: str,
        timed_out: bool = False,
        reason: str | None = None,
    ) -> None:
        self.reason = reason
        super().__init__(
            command=command,
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )
        if reason:
            self.args = (f"{self.args[0]}\n{reason}",)


class UnsupportedInterpreterChainError(WriterError):
    """Raised when a script interpreter is itself interpreted by another script."""

    def __init__(self, interpreter: str, nested_interpreter: str) -> None:
        self.interpreter = interpreter
        self.nested_interpreter = nested_interpreter
        super().__init__(
            f"passed interpreter ({interpreter}) is a script which has another script "
            f"({nested_interpreter}) as an interpreter, which is not supported"
        )


class PlacementError(WriterError):
    """Raised when the destination exists and was not produced by this pipeline."""

    def __init__(self, destination: str, reason: str) -> None:
        self.destination = destination
        self.reason = reason
        super().__init__(f"cannot place artifact at {destination}: {reason}")


class WrapperArgumentError(WriterError, ValueError):
    """Raised for unknown or truncated wrapper arguments."""


class HashMismatchError(WriterError):
    """Raised when generated content does not match its pinned hash.

    This is the expected outcome of the first build of a generated artifact:
    ``observed`` is the value the caller should pin before rebuilding.
    """

    def __init__(self, *, observed: str, expected: str | None) -> None:
        self.observed = observed
        self.expected = expected
        specified = expected if expected is not None else "<unpinned>"
        super().__init__(
            "hash mismatch in generated artifact:\n"
            f"  specified: {specified}\n"
            f"  got:       {observed}"
        )


__all__ = [
    "CheckFailedError",
    "CompileFailedError",
    "GenerationFailedError",
    "HashMismatchError",
    "InvalidNameError",
    "PlacementError",
    "UnsupportedInterpreterChainError",
    "WrapperArgumentError",
    "WriterError",
]
