"""
exec-writers: generated (non-deterministic) artifacts

File: src/exec_writers/generation/pipeline.py

Purpose
- Run an external generator, hash what it printed and seal the result only
  when the hash matches the caller's pin.

State machine
- pending -> generating -> verifying -> sealed
- generating -> failed (non-zero exit, timeout, empty output)
- verifying -> rejected (no pin, placeholder pin, or a different hash)

Functional requirements
- The generator runs outside the build sandbox with the host environment,
  receives a JSON request on stdin and prints the artifact on stdout.
- On timeout the generator's whole process group is killed.
- A missing ``#!`` line is synthesized from the fallback interpreter before
  hashing, so the pin always covers the exact sealed bytes.
- An absent or placeholder pin never matches: the first build of a generated
  artifact always fails and reports the observed hash.
- Nothing is retried.
"""

from __future__ import annotations

import json
import sys
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from exec_writers.constants import (
    DEFAULT_FALLBACK_INTERPRETER,
    DEFAULT_GENERATOR_HOST,
    DEFAULT_GENERATOR_MODEL,
    DEFAULT_GENERATOR_PORT,
    DEFAULT_GENERATOR_TIMEOUT_SECONDS,
    DEFAULT_SYSTEM_PROMPT,
    SHEBANG_MARKER,
)
from exec_writers.domain.models import (
    ArtifactSpec,
    CheckCommand,
    EmbeddedShebang,
    GeneratedHash,
    GenerationRequest,
    GenerationState,
    Inline,
)
from exec_writers.errors import GenerationFailedError, HashMismatchError
from exec_writers.generation.prompts import PromptRenderer, prompt_digest
from exec_writers.observability.logging import correlation_scope
from exec_writers.sandbox.executor import StepExecutor
from exec_writers.utils.fs import temp_directory
from exec_writers.utils.hashing import is_placeholder_hash, normalize_sri_hash, sri_sha256_bytes
from exec_writers.writers.names import resolve_name

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from exec_writers.domain.models import FinalArtifact, Target
    from exec_writers.writers.pipeline import ArtifactWriter

DEFAULT_GENERATOR_MODULE = "exec_writers.generation.ollama_generator"


def default_generator_command() -> tuple[str, ...]:
    return (sys.executable, "-m", DEFAULT_GENERATOR_MODULE)


@dataclass(frozen=True, slots=True)
class GeneratedWriterConfig:
    """Settings for a generated artifact.

    ``pinned_hash`` accepts SRI, ``sha256:<hex>`` or bare hex; ``None`` or the
    placeholder hash means "not pinned yet". An empty ``command`` runs the
    bundled Ollama generator.
    """

    prompt: str
    pinned_hash: str | None = None
    model: str = DEFAULT_GENERATOR_MODEL
    host: str = DEFAULT_GENERATOR_HOST
    port: int = DEFAULT_GENERATOR_PORT
    timeout_seconds: float = DEFAULT_GENERATOR_TIMEOUT_SECONDS
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    fallback_interpreter: str = DEFAULT_FALLBACK_INTERPRETER
    command: tuple[str, ...] = ()
    check: CheckCommand | Sequence[str] | None = None
    wrap_args: tuple[str, ...] = ()
    render_templates: bool = True
    options: dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValueError("GeneratedWriterConfig.prompt: must be a non-empty string")
        if self.timeout_seconds <= 0:
            raise ValueError("GeneratedWriterConfig.timeout_seconds: must be > 0")
        if not self.fallback_interpreter.startswith("/"):
            raise ValueError("GeneratedWriterConfig.fallback_interpreter: must be an absolute path")
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "wrap_args", tuple(self.wrap_args))
        object.__setattr__(self, "check", CheckCommand.coerce(self.check))

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        prompt: str,
        pinned_hash: str | None = None,
        check: Sequence[str] | None = None,
        wrap_args: Sequence[str] = (),
    ) -> GeneratedWriterConfig:
        generator = config["generator"]
        return cls(
            prompt=prompt,
            pinned_hash=pinned_hash,
            model=generator["model"],
            host=generator["host"],
            port=int(generator["port"]),
            timeout_seconds=float(generator["timeout_seconds"]),
            system_prompt=generator["system_prompt"],
            fallback_interpreter=generator["fallback_interpreter"],
            command=tuple(generator["command"]),
            check=check,
            wrap_args=tuple(wrap_args),
        )

    def resolved_command(self) -> tuple[str, ...]:
        return self.command or default_generator_command()


def ensure_preamble(content: bytes, fallback_interpreter: str) -> bytes:
    """Prefix ``#!<fallback_interpreter>`` unless the content already starts with ``#!``.

    >>> ensure_preamble(b"echo hi\\n", "/bin/sh")
    b'#!/bin/sh\\necho hi\\n'
    >>> ensure_preamble(b"#!/bin/dash\\necho hi\\n", "/bin/sh")
    b'#!/bin/dash\\necho hi\\n'
    """

    if content.startswith(SHEBANG_MARKER):
        return content
    return SHEBANG_MARKER + fallback_interpreter.encode("utf-8") + b"\n" + content


class NonDeterministicArtifactPipeline:
    """Bridge generated content into the writer through a pinned hash."""

    def __init__(
        self,
        writer: ArtifactWriter,
        *,
        executor: StepExecutor | None = None,
        prompt_renderer: PromptRenderer | None = None,
        logger: Any | None = None,
    ) -> None:
        self._writer = writer
        self._executor = executor or StepExecutor()
        self._prompts = prompt_renderer or PromptRenderer()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run(self, name_or_path: str, config: GeneratedWriterConfig) -> FinalArtifact:
        target = resolve_name(name_or_path)
        expected = None if is_placeholder_hash(config.pinned_hash) else config.pinned_hash
        expected_sri = None if expected is None else normalize_sri_hash(expected)

        generation_id = uuid.uuid4().hex
        with correlation_scope(artifact=target.leaf_name, generation_id=generation_id):
            self._transition(GenerationState.PENDING, target, pinned=expected_sri)
            content = self._generate(target, config)

            self._transition(GenerationState.VERIFYING, target)
            observed = GeneratedHash(sri_sha256_bytes(content))
            if expected_sri is None or observed.sri != expected_sri:
                self._transition(
                    GenerationState.REJECTED,
                    target,
                    observed=observed.sri,
                    expected=expected_sri,
                )
                raise HashMismatchError(observed=observed.sri, expected=expected)

            spec = ArtifactSpec(
                target=target,
                content=Inline(content),
                build_kind=EmbeddedShebang(check=CheckCommand.coerce(config.check)),
                wrap_args=config.wrap_args,
            )
            try:
                artifact = self._writer.write(spec)
            except Exception as exc:
                self._logger.warning(
                    "generation.write_failed",
                    artifact=target.leaf_name,
                    sha256=observed.sri,
                    error=type(exc).__name__,
                )
                raise
            self._transition(GenerationState.SEALED, target, sha256=artifact.sha256)
        return artifact

    def build_request(self, target: Target, config: GeneratedWriterConfig) -> GenerationRequest:
        system_prompt, prompt = config.system_prompt, config.prompt
        if config.render_templates:
            rendered = self._prompts.render(
                system_prompt=system_prompt,
                prompt=prompt,
                name=target.leaf_name,
                interpreter=config.fallback_interpreter,
                model=config.model,
            )
            system_prompt, prompt = rendered.system_prompt, rendered.prompt
        return GenerationRequest(
            name=target.leaf_name,
            prompt=prompt,
            model=config.model,
            host=config.host,
            port=config.port,
            timeout_seconds=config.timeout_seconds,
            system_prompt=system_prompt,
            fallback_interpreter=config.fallback_interpreter,
            options=dict(config.options),
        )

    def _generate(self, target: Target, config: GeneratedWriterConfig) -> bytes:
        request = self.build_request(target, config)
        command = config.resolved_command()
        self._transition(
            GenerationState.GENERATING,
            target,
            model=config.model,
            prompt_sha256=prompt_digest(request.system_prompt, request.prompt),
        )

        with temp_directory("exec-writers-gen-", root=self._writer.scratch_root) as scratch:
            result = self._executor.execute(
                command,
                cwd=scratch,
                timeout_seconds=config.timeout_seconds,
                stdin_bytes=json.dumps(request.to_dict(), sort_keys=True).encode("utf-8"),
                inherit_host_env=True,
            )

        reason: str | None = None
        if result.timed_out:
            reason = f"generator did not finish within {config.timeout_seconds:g}s"
        elif result.returncode != 0:
            reason = "generator exited with an error"
        elif not result.stdout_bytes.strip():
            reason = "generator produced no output"
        if reason is not None:
            self._transition(GenerationState.FAILED, target, reason=reason)
            raise GenerationFailedError(
                command=result.command,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
                timed_out=result.timed_out,
                reason=reason,
            )
        return ensure_preamble(result.stdout_bytes, config.fallback_interpreter)

    def _transition(self, state: GenerationState, target: Target, **fields: object) -> None:
        self._logger.info(
            "generation.state",
            state=state.value,
            artifact=target.leaf_name,
            **fields,
        )


__all__ = [
    "DEFAULT_GENERATOR_MODULE",
    "GeneratedWriterConfig",
    "NonDeterministicArtifactPipeline",
    "default_generator_command",
    "ensure_preamble",
]
