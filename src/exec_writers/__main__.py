"""Module entrypoint for ``python -m exec_writers``."""

from __future__ import annotations

from exec_writers.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
