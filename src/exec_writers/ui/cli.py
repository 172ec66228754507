"""Command-line interface router for exec-writers."""

from __future__ import annotations

import argparse
import json
import shlex
import sys
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from exec_writers import __version__
from exec_writers.config import dump_effective_config, load_config
from exec_writers.domain.models import FileRef, FinalArtifact, Inline
from exec_writers.errors import HashMismatchError
from exec_writers.generation import GeneratedWriterConfig, NonDeterministicArtifactPipeline
from exec_writers.observability import setup_logging, shutdown_logging
from exec_writers.sandbox import StepExecutor
from exec_writers.ui.render import CLIRenderer, create_renderer
from exec_writers.writers import PRESETS, ArtifactWriter, BinWriterConfig, ScriptWriterConfig
from exec_writers.writers.presets import build_preset

_HASH_MISMATCH_EXIT = 1


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 2

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="exec-writers",
        description=(
            "exec-writers: build single executable artifacts into an output tree.\n\n"
            "Common workflows:\n"
            "  exec-writers script hello --interpreter /bin/sh --file hello.sh\n"
            "  exec-writers compile /bin/tool --compile-command 'cc -x c $contentPath -o $out' "
            "--file tool.c\n"
            "  exec-writers preset python3 report --file report.py\n"
            "  exec-writers generate greet --prompt 'print hello' --hash sha256-...\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to exec-writers TOML config (default: ./exec-writers.toml if present).",
    )
    common.add_argument(
        "--output-root",
        default=None,
        help="Output tree root (overrides paths.output_root).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and log at DEBUG level.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    content = argparse.ArgumentParser(add_help=False)
    source = content.add_mutually_exclusive_group()
    source.add_argument("--file", default=None, help="Read content from this file")
    source.add_argument("--text", default=None, help="Use this literal text as content")
    content.add_argument(
        "--wrap",
        action="append",
        default=[],
        metavar="ARGS",
        help="Wrapper arguments as one shell-quoted string, e.g. --wrap='--set FOO bar' "
        "(repeatable)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # script --------------------------------------------------------------
    script_parser = subparsers.add_parser(
        "script",
        parents=[common, content],
        help="Write an interpreted script with a #! line",
        description=(
            "Prefix content with #!<interpreter>, run the optional check and place it.\n"
            "Without --file or --text the content is read from stdin.\n\n"
            "Examples:\n"
            "  exec-writers script hello --interpreter /bin/sh --text 'echo hello'\n"
            "  exec-writers script /bin/lint --interpreter /usr/bin/python3 "
            "--check 'flake8' --file lint.py\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    script_parser.add_argument("name", help="Bare name or absolute path inside the output tree")
    script_parser.add_argument("--interpreter", required=True, help="Interpreter placed after #!")
    script_parser.add_argument("--check", default=None, help="Check command (shell-quoted)")
    script_parser.set_defaults(handler=_cmd_script)

    # compile -------------------------------------------------------------
    compile_parser = subparsers.add_parser(
        "compile",
        parents=[common, content],
        help="Write a compiled executable",
        description=(
            "Run a compile command reading $contentPath and writing $out.\n\n"
            "Examples:\n"
            "  exec-writers compile hello --compile-command 'cc -x c \"$contentPath\" -o \"$out\"' "
            "--file hello.c\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    compile_parser.add_argument("name", help="Bare name or absolute path inside the output tree")
    compile_parser.add_argument(
        "--compile-command",
        required=True,
        help="Shell command run with $contentPath and $out in its environment",
    )
    compile_parser.add_argument(
        "--no-strip", action="store_true", default=False, help="Keep debug symbols"
    )
    compile_parser.set_defaults(handler=_cmd_compile)

    # preset --------------------------------------------------------------
    preset_parser = subparsers.add_parser(
        "preset",
        parents=[common, content],
        help="Write an artifact with a language preset",
        description=(
            "Build with one of the registered language presets (see `exec-writers presets`).\n\n"
            "Examples:\n"
            "  exec-writers preset bash hello --text 'echo hello'\n"
            "  exec-writers preset rust tool --bin --toolchain /opt/rust/bin/rustc --file main.rs\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    preset_parser.add_argument("preset", choices=sorted(PRESETS), help="Preset name")
    preset_parser.add_argument("name", help="Bare name or absolute path inside the output tree")
    preset_parser.add_argument(
        "--toolchain", default=None, help="Interpreter or compiler path (default: found on PATH)"
    )
    preset_parser.add_argument(
        "--bin", action="store_true", default=False, help="Place the artifact at /bin/<name>"
    )
    preset_parser.set_defaults(handler=_cmd_preset)

    # generate ------------------------------------------------------------
    generate_parser = subparsers.add_parser(
        "generate",
        parents=[common],
        help="Write a generated artifact gated by a pinned hash",
        description=(
            "Run the generator, hash its output and seal it only if the hash matches --hash.\n"
            "The first run without --hash always fails and prints the hash to pin.\n\n"
            "Examples:\n"
            "  exec-writers generate greet --prompt 'a script that prints hello'\n"
            "  exec-writers generate greet --prompt '...' --hash sha256-...\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    generate_parser.add_argument("name", help="Bare name or absolute path inside the output tree")
    generate_parser.add_argument("--prompt", required=True, help="Prompt handed to the generator")
    generate_parser.add_argument("--hash", dest="pinned_hash", default=None, help="Pinned hash")
    generate_parser.add_argument("--model", default=None, help="Model name")
    generate_parser.add_argument(
        "--generator", default=None, help="Generator command (shell-quoted)"
    )
    generate_parser.add_argument(
        "--timeout", type=float, default=None, help="Generator timeout in seconds"
    )
    generate_parser.add_argument("--check", default=None, help="Check command (shell-quoted)")
    generate_parser.add_argument(
        "--wrap", action="append", default=[], metavar="ARGS", help="Wrapper arguments"
    )
    generate_parser.set_defaults(handler=_cmd_generate)

    # presets -------------------------------------------------------------
    presets_parser = subparsers.add_parser(
        "presets", parents=[common], help="List the registered language presets"
    )
    presets_parser.set_defaults(handler=_cmd_presets)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show the effective configuration"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_script(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    writer_config = ScriptWriterConfig(
        interpreter=args.interpreter,
        check=_split_command(args.check, "--check"),
        wrap_args=_wrap_args(args.wrap),
    )
    spec = writer_config.spec(args.name, _read_content(args))
    with _logging_for(config):
        artifact = ArtifactWriter.from_config(config).write(spec)
    return _report_artifact(args, artifact)


def _cmd_compile(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    writer_config = BinWriterConfig(
        compile_command=args.compile_command,
        strip=not args.no_strip,
        wrap_args=_wrap_args(args.wrap),
    )
    spec = writer_config.spec(args.name, _read_content(args))
    with _logging_for(config):
        artifact = ArtifactWriter.from_config(config).write(spec)
    return _report_artifact(args, artifact)


def _cmd_preset(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    try:
        preset = build_preset(args.preset, args.toolchain, wrap_args=_wrap_args(args.wrap))
    except KeyError as exc:
        raise CLIError(str(exc.args[0])) from exc
    content = _read_content(args)
    with _logging_for(config):
        writer = ArtifactWriter.from_config(config)
        if args.bin:
            artifact = preset.write_bin(writer, args.name, content)
        else:
            artifact = preset.write(writer, args.name, content)
    return _report_artifact(args, artifact)


def _cmd_generate(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {
        "generator.model": args.model,
        "generator.timeout_seconds": args.timeout,
    }
    generator_command = _split_command(args.generator, "--generator")
    if generator_command is not None:
        overrides["generator.command"] = list(generator_command)
    config = _load_effective_config(args, overrides)
    generated = GeneratedWriterConfig.from_config(
        config,
        prompt=args.prompt,
        pinned_hash=args.pinned_hash,
        check=_split_command(args.check, "--check"),
        wrap_args=_wrap_args(args.wrap),
    )
    with _logging_for(config):
        writer = ArtifactWriter.from_config(config)
        pipeline = NonDeterministicArtifactPipeline(
            writer,
            executor=StepExecutor(
                default_timeout_seconds=float(config["generator"]["timeout_seconds"])
            ),
        )
        try:
            artifact = pipeline.run(args.name, generated)
        except HashMismatchError as exc:
            if _flag(args, "json"):
                _emit_json(
                    {
                        "command": "generate",
                        "status": "hash_mismatch",
                        "observed": exc.observed,
                        "expected": exc.expected,
                    }
                )
            else:
                _get_renderer(args).hash_mismatch(observed=exc.observed, expected=exc.expected)
            return _HASH_MISMATCH_EXIT
    return _report_artifact(args, artifact)


def _cmd_presets(args: argparse.Namespace) -> int:
    rows = [
        (name, info.kind, info.program, info.summary) for name, info in sorted(PRESETS.items())
    ]
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "presets",
                "presets": [
                    {"name": name, "kind": kind, "program": program, "summary": summary}
                    for name, kind, program, summary in rows
                ],
            }
        )
        return 0
    _get_renderer(args).table(("preset", "kind", "program", "summary"), rows)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if _flag(args, "json"):
        _emit_json({"command": "config", "config": config})
        return 0
    _get_renderer(args).text(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _report_artifact(args: argparse.Namespace, artifact: FinalArtifact) -> int:
    if _flag(args, "json"):
        _emit_json({"command": args.command, "status": "sealed", "artifact": artifact.to_dict()})
    else:
        _get_renderer(args).artifact(artifact)
    return 0


def _load_effective_config(
    args: argparse.Namespace, extra_overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    overrides: dict[str, object] = dict(extra_overrides or {})
    output_root = getattr(args, "output_root", None)
    if output_root:
        overrides["paths.output_root"] = str(Path(output_root).expanduser().resolve())
    if _flag(args, "verbose"):
        overrides["observability.log_level"] = "DEBUG"
    return load_config(getattr(args, "config_path", None), cli_overrides=overrides)


@contextmanager
def _logging_for(config: Mapping[str, Any]) -> Iterator[None]:
    """Run-scoped JSON-lines logging for one command invocation."""

    run_id = time.strftime("%Y%m%dT%H%M%SZ", time.gmtime()) + "-" + uuid.uuid4().hex[:8]
    handle = setup_logging(
        config["observability"],
        run_id=run_id,
        log_dir=config["paths"]["log_dir"],
    )
    try:
        yield
    finally:
        shutdown_logging(handle)


def _read_content(args: argparse.Namespace) -> Inline | FileRef:
    if args.text is not None:
        return Inline(args.text)
    if args.file is not None:
        path = Path(args.file).expanduser()
        if not path.is_file():
            raise CLIError(f"content file does not exist: {path}")
        return FileRef(path.resolve())
    return Inline(sys.stdin.buffer.read())


def _split_command(raw: str | None, option: str) -> tuple[str, ...] | None:
    if raw is None or not raw.strip():
        return None
    try:
        return tuple(shlex.split(raw))
    except ValueError as exc:
        raise CLIError(f"{option}: {exc}") from exc


def _wrap_args(values: Sequence[str]) -> tuple[str, ...]:
    parsed: list[str] = []
    for value in values:
        try:
            parsed.extend(shlex.split(value))
        except ValueError as exc:
            raise CLIError(f"--wrap: {exc}") from exc
    return tuple(parsed)


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]


if __name__ == "__main__":
    raise SystemExit(run_cli())
