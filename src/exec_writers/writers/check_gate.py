"""Pre-placement validation: run a checker against the scratch artifact."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.errors import CheckFailedError

if TYPE_CHECKING:
    from pathlib import Path

    from exec_writers.domain.models import CheckCommand
    from exec_writers.sandbox.executor import StepExecutor


class CheckGate:
    """Invoke a check command with the artifact path as its only positional argument.

    Exit status 0 accepts the artifact. Anything else, including a timeout,
    raises :class:`CheckFailedError` with the checker's output verbatim.
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._executor = executor
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run(self, check: CheckCommand, artifact_path: Path) -> None:
        command = (*check.command, str(artifact_path))
        result = self._executor.execute(
            command,
            cwd=artifact_path.parent,
            timeout_seconds=self._timeout_seconds,
        )
        if result.succeeded:
            self._logger.debug("check.accepted", command=list(command))
            return

        self._logger.info(
            "check.rejected",
            command=list(command),
            returncode=result.returncode,
            timed_out=result.timed_out,
        )
        raise CheckFailedError(
            command=command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
        )


__all__ = ["CheckGate"]
