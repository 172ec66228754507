"""
exec-writers: default external generator backed by an Ollama server

File: src/exec_writers/generation/ollama_generator.py

Purpose
- Child process run by the generated-artifact pipeline:
  ``python -m exec_writers.generation.ollama_generator``.
- Reads one request object as JSON on stdin, asks the model for the artifact
  and prints the cleaned content on stdout.

Functional requirements
- The model is pulled first when the server does not list it.
- Chat responses are requested with ``stream=false`` and bounded by the
  request timeout.
- Diagnostics go to stderr; stdout carries nothing but the content.
- Any HTTP or connection failure exits 1.
"""

from __future__ import annotations

import json
import sys
from typing import TYPE_CHECKING, Any, TextIO

import httpx

from exec_writers.constants import (
    DEFAULT_FALLBACK_INTERPRETER,
    DEFAULT_GENERATOR_HOST,
    DEFAULT_GENERATOR_MODEL,
    DEFAULT_GENERATOR_PORT,
    DEFAULT_GENERATOR_TIMEOUT_SECONDS,
    DEFAULT_SYSTEM_PROMPT,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

_CODE_FENCE = "```"
_PYTHON_PREAMBLE = "#!/usr/bin/env python3"


class GeneratorRequestError(ValueError):
    """Raised when the request read from stdin is unusable."""


def clean_response(response: str, fallback_interpreter: str) -> str:
    """Strip a surrounding Markdown code fence and make sure a ``#!`` line leads.

    >>> clean_response("```bash\\necho hi\\n```", "/bin/sh")
    '#!/bin/sh\\necho hi'
    >>> clean_response("#!/bin/dash\\necho hi", "/bin/sh")
    '#!/bin/dash\\necho hi'
    """

    content = response.strip()
    if content.startswith(_CODE_FENCE) and _CODE_FENCE in content[3:]:
        start = content.find("\n", content.find(_CODE_FENCE)) + 1
        end = content.rfind(_CODE_FENCE)
        if start < end:
            content = content[start:end].strip()

    if not content.startswith("#!"):
        if "python" in content.lower()[:20]:
            content = f"{_PYTHON_PREAMBLE}\n{content}"
        else:
            content = f"#!{fallback_interpreter}\n{content}"
    return content


def _model_listed(model: str, models: Sequence[Mapping[str, Any]]) -> bool:
    for entry in models:
        listed = str(entry.get("name") or entry.get("model") or "")
        if listed == model or (":" not in model and listed == f"{model}:latest"):
            return True
    return False


class OllamaClient:
    """Minimal synchronous client for the three Ollama endpoints the generator needs."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        timeout_seconds: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=f"http://{host}:{port}",
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def __enter__(self) -> OllamaClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_models(self) -> list[dict[str, Any]]:
        """GET /api/tags."""
        resp = self._client.get("/api/tags")
        resp.raise_for_status()
        models = resp.json().get("models", [])
        return [entry for entry in models if isinstance(entry, dict)]

    def pull(self, model: str) -> None:
        """POST /api/pull, waiting for completion."""
        resp = self._client.post("/api/pull", json={"model": model, "stream": False})
        resp.raise_for_status()

    def chat(
        self,
        *,
        model: str,
        system_prompt: str,
        prompt: str,
        options: Mapping[str, object] | None = None,
    ) -> str:
        """POST /api/chat with ``stream=false``; returns the assistant message content."""
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
        }
        if options:
            payload["options"] = dict(options)
        resp = self._client.post("/api/chat", json=payload)
        resp.raise_for_status()
        message = resp.json().get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise httpx.DecodingError("chat response carries no message content", request=resp.request)
        return content


def parse_request(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GeneratorRequestError(f"request is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise GeneratorRequestError("request must be a JSON object")
    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise GeneratorRequestError("request.prompt must be a non-empty string")
    try:
        return {
            "prompt": prompt,
            "model": str(payload.get("model") or DEFAULT_GENERATOR_MODEL),
            "host": str(payload.get("host") or DEFAULT_GENERATOR_HOST),
            "port": int(payload.get("port") or DEFAULT_GENERATOR_PORT),
            "timeout_seconds": float(
                payload.get("timeout_seconds") or DEFAULT_GENERATOR_TIMEOUT_SECONDS
            ),
            "system_prompt": str(payload.get("system_prompt") or DEFAULT_SYSTEM_PROMPT),
            "fallback_interpreter": str(
                payload.get("fallback_interpreter") or DEFAULT_FALLBACK_INTERPRETER
            ),
            "options": dict(payload.get("options") or {}),
        }
    except (TypeError, ValueError) as exc:
        raise GeneratorRequestError(f"invalid request field: {exc}") from exc


def generate(
    request: Mapping[str, Any],
    *,
    transport: httpx.BaseTransport | None = None,
    stderr: TextIO | None = None,
) -> str:
    err = stderr if stderr is not None else sys.stderr
    model = request["model"]
    with OllamaClient(
        host=request["host"],
        port=request["port"],
        timeout_seconds=request["timeout_seconds"],
        transport=transport,
    ) as client:
        if not _model_listed(model, client.list_models()):
            print(f"Model '{model}' not found. Pulling it now...", file=err)
            client.pull(model)
        print(f"Generating code using model '{model}'...", file=err)
        response = client.chat(
            model=model,
            system_prompt=request["system_prompt"],
            prompt=request["prompt"],
            options=request["options"],
        )
    return clean_response(response, request["fallback_interpreter"])


def main(
    argv: Sequence[str] | None = None,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    del argv
    source = stdin if stdin is not None else sys.stdin
    out = stdout if stdout is not None else sys.stdout
    err = stderr if stderr is not None else sys.stderr

    try:
        request = parse_request(source.read())
    except GeneratorRequestError as exc:
        print(f"Error: {exc}", file=err)
        return 1

    try:
        content = generate(request, transport=transport, stderr=err)
    except httpx.ConnectError as exc:
        print(f"Error connecting to Ollama: {exc}", file=err)
        print(
            f"Make sure Ollama is running at {request['host']}:{request['port']}",
            file=err,
        )
        return 1
    except httpx.HTTPError as exc:
        print(f"Error generating code: {exc}", file=err)
        return 1

    print(content, file=out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
