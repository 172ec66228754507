"""Output rendering for the exec-writers CLI.

File: src/exec_writers/ui/render.py

Purpose
- Plain-text rendering of build results, preset listings and failures.
- Respect the NO_COLOR environment variable and the --no-color flag.

Functional requirements
- Results go to stdout, diagnostics to stderr.
- Color is only emitted on a TTY.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from exec_writers.domain.models import FinalArtifact

_GREEN = "\x1b[32m"
_RED = "\x1b[31m"
_YELLOW = "\x1b[33m"
_RESET = "\x1b[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer."""

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._out = out if out is not None else sys.stdout
        self._err = err if err is not None else sys.stderr
        self._color = _color_allowed(no_color, self._out)

    def _paint(self, text: str, code: str) -> str:
        return f"{code}{text}{_RESET}" if self._color else text

    def text(self, line: str) -> None:
        print(line, file=self._out)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}", file=self._out)

    def section(self, title: str) -> None:
        print(f"\n{title}", file=self._out)

    def warning(self, text: str) -> None:
        print(self._paint(f"warning: {text}", _YELLOW), file=self._err)

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        """Print a left-aligned ASCII table."""

        if not rows:
            return
        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row[: len(headers)]):
                widths[i] = max(widths[i], len(str(cell)))

        def _pad(cells: Sequence[str]) -> str:
            return "  ".join(str(cell).ljust(widths[i]) for i, cell in enumerate(cells)).rstrip()

        print(_pad(list(headers)), file=self._out)
        print("  ".join("-" * w for w in widths), file=self._out)
        for row in rows:
            print(_pad(list(row)), file=self._out)

    def artifact(self, artifact: FinalArtifact) -> None:
        """Print where a sealed artifact ended up."""

        print(self._paint("built", _GREEN) + f" {artifact.path}", file=self._out)
        if self.verbose:
            self.kv("  real path", artifact.real_path)
            self.kv("  sha256", artifact.sha256)
            self.kv("  wrapped", "yes" if artifact.wrapped else "no")

    def hash_mismatch(self, *, observed: str, expected: str | None) -> None:
        """Tell the caller which hash to pin."""

        print(self._paint("hash mismatch", _RED), file=self._err)
        print(f"  specified: {expected or '<unpinned>'}", file=self._err)
        print(f"  got:       {observed}", file=self._err)
        print(f"pin it with: --hash {observed}", file=self._err)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
