"""Domain types shared across writers: targets, content, build kinds and artifacts."""

from exec_writers.domain.models import (
    ArtifactSpec,
    BareName,
    BuildKind,
    BuildResult,
    CheckCommand,
    Compile,
    Content,
    EmbeddedShebang,
    ExplicitPath,
    FileRef,
    FinalArtifact,
    GeneratedHash,
    GenerationRequest,
    GenerationState,
    Inline,
    Shebang,
    Target,
)

__all__ = [
    "ArtifactSpec",
    "BareName",
    "BuildKind",
    "BuildResult",
    "CheckCommand",
    "Compile",
    "Content",
    "EmbeddedShebang",
    "ExplicitPath",
    "FileRef",
    "FinalArtifact",
    "GeneratedHash",
    "GenerationRequest",
    "GenerationState",
    "Inline",
    "Shebang",
    "Target",
]
