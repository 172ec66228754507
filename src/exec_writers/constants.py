"""Stable constants shared across writer components."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
PLACEMENT_LEDGER_SCHEMA_VERSION: Final[int] = 1

# Bare artifact names: POSIX portable filename starting with a letter, digit, dot or underscore.
BARE_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9._][A-Za-z0-9._-]*")

# Layout inside an output root.
BARE_NAME_SUBTREE: Final[PurePosixPath] = PurePosixPath("bin")
LEDGER_DIR: Final[PurePosixPath] = PurePosixPath(".exec-writers")
LEDGER_FILENAME: Final[str] = "placements.json"
WRAPPED_PREFIX: Final[str] = "."
WRAPPED_SUFFIX: Final[str] = "-wrapped"

# Scratch layout used by build steps.
SCRATCH_CONTENT_NAME: Final[str] = "content"
SCRATCH_OUTPUT_NAME: Final[str] = "out"

# Content addressing.
SHEBANG_MARKER: Final[bytes] = b"#!"
FAKE_SRI_HASH: Final[str] = "sha256-AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="

# Defaults (documented in exec-writers.toml).
DEFAULT_STEP_TIMEOUT_SECONDS: Final[float] = 300.0
DEFAULT_GENERATOR_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_STRIP_COMMAND: Final[tuple[str, ...]] = ("strip", "-S")
DEFAULT_FIXUP_COMMAND: Final[tuple[str, ...]] = ("codesign", "--force", "--sign", "-")
DEFAULT_WRAPPER_SHELL: Final[str] = "/bin/sh"
DEFAULT_FALLBACK_INTERPRETER: Final[str] = "/bin/bash"
DEFAULT_GENERATOR_MODEL: Final[str] = "codellama"
DEFAULT_GENERATOR_HOST: Final[str] = "localhost"
DEFAULT_GENERATOR_PORT: Final[int] = 11434
DEFAULT_SYSTEM_PROMPT: Final[str] = "You are a helpful assistant that generates code."

__all__ = [
    "BARE_NAME_PATTERN",
    "BARE_NAME_SUBTREE",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_FALLBACK_INTERPRETER",
    "DEFAULT_FIXUP_COMMAND",
    "DEFAULT_GENERATOR_HOST",
    "DEFAULT_GENERATOR_MODEL",
    "DEFAULT_GENERATOR_PORT",
    "DEFAULT_GENERATOR_TIMEOUT_SECONDS",
    "DEFAULT_STEP_TIMEOUT_SECONDS",
    "DEFAULT_STRIP_COMMAND",
    "DEFAULT_SYSTEM_PROMPT",
    "DEFAULT_WRAPPER_SHELL",
    "FAKE_SRI_HASH",
    "LEDGER_DIR",
    "LEDGER_FILENAME",
    "PLACEMENT_LEDGER_SCHEMA_VERSION",
    "SCRATCH_CONTENT_NAME",
    "SCRATCH_OUTPUT_NAME",
    "SHEBANG_MARKER",
    "WRAPPED_PREFIX",
    "WRAPPED_SUFFIX",
]
