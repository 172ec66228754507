"""Unit tests for wrapper argument parsing and the shell shim."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from exec_writers.errors import WrapperArgumentError
from exec_writers.writers.wrapper import (
    WrapOp,
    Wrapper,
    parse_wrap_args,
    render_shim,
    wrapped_program_name,
)


def test_parse_groups_flags_with_operands() -> None:
    ops = parse_wrap_args(["--set", "FOO", "bar", "--prefix", "PATH", ":", "/opt/bin", "--add-flags", "-v"])

    assert ops == (
        WrapOp("--set", ("FOO", "bar")),
        WrapOp("--prefix", ("PATH", ":", "/opt/bin")),
        WrapOp("--add-flags", ("-v",)),
    )


@pytest.mark.parametrize(
    ("args", "message"),
    [
        (["--bogus"], "unknown wrapper argument"),
        (["--set", "FOO"], "expects 2"),
        (["--prefix", "PATH", ":"], "expects 3"),
        (["--set", "1BAD", "x"], "invalid environment variable name"),
        (["FOO"], "unknown wrapper argument"),
    ],
)
def test_parse_rejects_unknown_or_truncated_arguments(args: list[str], message: str) -> None:
    with pytest.raises(WrapperArgumentError, match=message):
        parse_wrap_args(args)


def test_render_shim_quotes_values() -> None:
    shim = render_shim(
        parse_wrap_args(["--set", "GREETING", "it's here", "--append-flags", "--tail"]),
        Path("/root/bin/.x-wrapped"),
    )

    lines = shim.splitlines()
    assert lines[0] == "#!/bin/sh"
    assert lines[1] == "export GREETING='it'\"'\"'s here'"
    assert lines[-1] == 'exec /root/bin/.x-wrapped "$@" --tail'


def test_wrapped_program_name() -> None:
    assert wrapped_program_name("tool") == ".tool-wrapped"


def test_wrap_without_operations_is_a_no_op(tmp_path: Path) -> None:
    program = tmp_path / "tool"
    program.write_text("x")

    assert Wrapper().wrap(program, ()) is None
    assert program.read_text() == "x"


@pytest.mark.skipif(shutil.which("sh") is None, reason="POSIX sh not available")
def test_shim_applies_environment_and_flags(tmp_path: Path) -> None:
    program = tmp_path / "tool"
    program.write_bytes(b'#!/bin/sh\nprintf "%s|%s|%s|%s\\n" "$GREETING" "$PATHLIKE" "$KEEP" "$*"\n')
    program.chmod(0o755)
    original = program.read_bytes()

    result = Wrapper().wrap(
        program,
        parse_wrap_args(
            [
                "--set", "GREETING", "hello world",
                "--prefix", "PATHLIKE", ":", "/first",
                "--suffix", "PATHLIKE", ":", "/last",
                "--set-default", "KEEP", "default",
                "--add-flags", "-a 'b c'",
            ]
        ),
    )

    assert result is not None
    assert result.wrapped_program == tmp_path / ".tool-wrapped"
    assert result.wrapped_program.read_bytes() == original
    completed = subprocess.run(
        [str(program), "arg"],
        capture_output=True,
        check=True,
        env={"PATH": "/usr/bin:/bin", "PATHLIKE": "/mid", "KEEP": "caller"},
    )
    assert completed.stdout == b"hello world|/first:/mid:/last|caller|-a b c arg\n"
