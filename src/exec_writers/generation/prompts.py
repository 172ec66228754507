"""
exec-writers: generator prompt rendering

File: src/exec_writers/generation/prompts.py

Purpose
- Render the system and user prompts handed to the generator with strict
  placeholders.

Functional requirements
- Only ``name``, ``interpreter`` and ``model`` may be referenced; any other
  variable is an error, never an empty string.
- Rendering is deterministic for the same inputs. ``prompt_digest`` is the
  SHA-256 logged with each generator run so a pinned artifact can be traced
  to its prompt.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from jinja2 import Environment, StrictUndefined, TemplateError, meta

from exec_writers.utils.hashing import sha256_text

if TYPE_CHECKING:
    from collections.abc import Mapping

ALLOWED_VARIABLES: frozenset[str] = frozenset({"name", "interpreter", "model"})


class PromptTemplateError(ValueError):
    """Raised when a prompt template is malformed or references unknown variables."""


@dataclass(frozen=True, slots=True)
class RenderedPrompts:
    system_prompt: str
    prompt: str


def prompt_digest(system_prompt: str, prompt: str) -> str:
    return sha256_text(system_prompt + "\0" + prompt)


class PromptRenderer:
    """Strict jinja2 rendering of generator prompts."""

    def __init__(self) -> None:
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    def render_one(self, source: str, variables: Mapping[str, str]) -> str:
        try:
            parsed = self._environment.parse(source)
        except TemplateError as exc:
            raise PromptTemplateError(f"invalid prompt template: {exc}") from exc
        unknown = sorted(meta.find_undeclared_variables(parsed) - ALLOWED_VARIABLES)
        if unknown:
            raise PromptTemplateError(
                "prompt references unknown variable(s): " + ", ".join(unknown)
            )
        try:
            return self._environment.from_string(source).render(**variables)
        except TemplateError as exc:
            raise PromptTemplateError(f"prompt rendering failed: {exc}") from exc

    def render(
        self,
        *,
        system_prompt: str,
        prompt: str,
        name: str,
        interpreter: str,
        model: str,
    ) -> RenderedPrompts:
        variables = {"name": name, "interpreter": interpreter, "model": model}
        rendered_system = self.render_one(system_prompt, variables)
        rendered_prompt = self.render_one(prompt, variables)
        return RenderedPrompts(system_prompt=rendered_system, prompt=rendered_prompt)


__all__ = [
    "ALLOWED_VARIABLES",
    "PromptRenderer",
    "PromptTemplateError",
    "RenderedPrompts",
    "prompt_digest",
]
