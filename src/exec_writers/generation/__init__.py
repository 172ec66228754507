"""Generated artifacts: external generator, prompt rendering and hash-pinned sealing."""

from exec_writers.generation.pipeline import (
    GeneratedWriterConfig,
    NonDeterministicArtifactPipeline,
    default_generator_command,
    ensure_preamble,
)
from exec_writers.generation.prompts import PromptRenderer, PromptTemplateError

__all__ = [
    "GeneratedWriterConfig",
    "NonDeterministicArtifactPipeline",
    "PromptRenderer",
    "PromptTemplateError",
    "default_generator_command",
    "ensure_preamble",
]
