"""Artifact writers: build, check, relocate, wrap and seal executables."""

from exec_writers.writers.check_gate import CheckGate
from exec_writers.writers.compile import CompileBuilder, render_compile_command
from exec_writers.writers.content import materialize, read_content
from exec_writers.writers.names import resolve_name
from exec_writers.writers.pipeline import (
    ArtifactWriter,
    BinWriterConfig,
    ScriptWriterConfig,
    as_content,
)
from exec_writers.writers.presets import (
    PRESETS,
    BinPreset,
    FSharpPreset,
    ScriptPreset,
    build_preset,
)
from exec_writers.writers.relocate import PlacementLedger, Relocator
from exec_writers.writers.shebang import ShebangBuilder, build_interpreter_line
from exec_writers.writers.wrapper import Wrapper, parse_wrap_args, render_shim

__all__ = [
    "ArtifactWriter",
    "BinPreset",
    "BinWriterConfig",
    "CheckGate",
    "CompileBuilder",
    "FSharpPreset",
    "PRESETS",
    "PlacementLedger",
    "Relocator",
    "ScriptPreset",
    "ScriptWriterConfig",
    "ShebangBuilder",
    "Wrapper",
    "as_content",
    "build_interpreter_line",
    "build_preset",
    "materialize",
    "parse_wrap_args",
    "read_content",
    "render_compile_command",
    "render_shim",
    "resolve_name",
]
