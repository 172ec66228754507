"""Child-process execution for build steps, checks and generators."""

from exec_writers.sandbox.executor import (
    CommandRunner,
    StepExecutor,
    StepResult,
    SubprocessCommandRunner,
    normalize_command,
)

__all__ = [
    "CommandRunner",
    "StepExecutor",
    "StepResult",
    "SubprocessCommandRunner",
    "normalize_command",
]
