"""Unit tests for shebang synthesis and interpreted builds."""

from __future__ import annotations

import stat
from typing import TYPE_CHECKING

import pytest

from exec_writers.domain.models import CheckCommand
from exec_writers.errors import CheckFailedError, UnsupportedInterpreterChainError
from exec_writers.host import CapabilityMode, HostCapabilities
from exec_writers.writers.check_gate import CheckGate
from exec_writers.writers.shebang import (
    ShebangBuilder,
    build_interpreter_line,
    interpreter_executable,
    is_script,
    read_interpreter_line,
)

if TYPE_CHECKING:
    from pathlib import Path


def _script(path: Path, first_line: str) -> Path:
    path.write_text(f"{first_line}\nexec true\n")
    path.chmod(0o755)
    return path


def test_interpreter_line_is_verbatim_without_chaining(linux_host: HostCapabilities) -> None:
    assert build_interpreter_line("/usr/bin/env python3 -u", linux_host) == "#!/usr/bin/env python3 -u"


def test_chaining_prefixes_the_interpreters_own_interpreter(
    tmp_path: Path, chaining_host: HostCapabilities
) -> None:
    wrapper = _script(tmp_path / "guile-wrapper", "#! /bin/sh")

    line = build_interpreter_line(f"{wrapper} --no-auto-compile", chaining_host)

    assert line == f"#!/bin/sh {wrapper} --no-auto-compile"


def test_chaining_passes_wrapper_flags_through_as_one_string(
    tmp_path: Path, chaining_host: HostCapabilities
) -> None:
    wrapper = _script(tmp_path / "shellA", "#!/bin/sh --flag -e")
    content = tmp_path / "content"
    content.write_bytes(b"(display 1)\n")

    result = ShebangBuilder(capabilities=chaining_host).build(
        interpreter=str(wrapper),
        content_path=content,
        scratch_dir=tmp_path / "scratch",
        leaf_name="chained",
    )

    first_line, rest = result.scratch_path.read_bytes().split(b"\n", 1)
    assert first_line == f"#!/bin/sh --flag -e {wrapper}".encode()
    assert rest == b"(display 1)\n"


def test_chaining_leaves_binary_interpreters_alone(
    tmp_path: Path, chaining_host: HostCapabilities
) -> None:
    binary = tmp_path / "bin-interp"
    binary.write_bytes(b"\x7fELF\x02\x01")

    assert build_interpreter_line(str(binary), chaining_host) == f"#!{binary}"


def test_nested_script_interpreters_are_unsupported(
    tmp_path: Path, chaining_host: HostCapabilities
) -> None:
    inner = _script(tmp_path / "inner", "#!/bin/sh")
    outer = _script(tmp_path / "outer", f"#!{inner}")

    with pytest.raises(UnsupportedInterpreterChainError) as exc_info:
        build_interpreter_line(str(outer), chaining_host)

    assert exc_info.value.nested_interpreter == str(inner)
    assert "not supported" in str(exc_info.value)


def test_helpers(tmp_path: Path) -> None:
    script = _script(tmp_path / "s", "#!  /bin/bash -e")

    assert interpreter_executable("  /bin/bash -e ") == "/bin/bash"
    assert is_script(script)
    assert not is_script(tmp_path / "missing")
    assert read_interpreter_line(script) == "/bin/bash -e"
    with pytest.raises(ValueError):
        interpreter_executable("   ")


def test_build_writes_shebang_and_content_and_marks_executable(
    tmp_path: Path, linux_host: HostCapabilities
) -> None:
    content = tmp_path / "content"
    content.write_bytes(b"echo hi\n")
    builder = ShebangBuilder(capabilities=linux_host)

    result = builder.build(
        interpreter="/bin/sh",
        content_path=content,
        scratch_dir=tmp_path / "scratch",
        leaf_name="hello",
    )

    assert result.scratch_path == tmp_path / "scratch" / "out" / "hello"
    assert result.scratch_path.read_bytes() == b"#!/bin/sh\necho hi\n"
    assert result.scratch_path.stat().st_mode & stat.S_IXUSR


def test_build_embedded_writes_content_verbatim(tmp_path: Path, linux_host: HostCapabilities) -> None:
    content = tmp_path / "content"
    content.write_bytes(b"#!/bin/bash\necho generated\n")

    result = ShebangBuilder(capabilities=linux_host).build_embedded(
        content_path=content, scratch_dir=tmp_path, leaf_name="gen"
    )

    assert result.scratch_path.read_bytes() == b"#!/bin/bash\necho generated\n"


def test_check_runs_before_the_artifact_becomes_executable(
    tmp_path: Path, linux_host: HostCapabilities, fake_runner, fake_executor, step_result
) -> None:
    content = tmp_path / "content"
    content.write_bytes(b"bad syntax (\n")
    seen_modes: list[int] = []

    def reject(call):
        seen_modes.append(stat.S_IMODE((tmp_path / "out" / "x").stat().st_mode))
        return step_result(call, returncode=2, stderr=b"syntax error\n")

    fake_runner.handler = reject
    builder = ShebangBuilder(capabilities=linux_host, check_gate=CheckGate(fake_executor))

    with pytest.raises(CheckFailedError, match="syntax error"):
        builder.build(
            interpreter="/bin/sh",
            content_path=content,
            scratch_dir=tmp_path,
            leaf_name="x",
            check=CheckCommand(("sh", "-n")),
        )

    assert seen_modes and not seen_modes[0] & stat.S_IXUSR
    assert fake_runner.calls[0].command == ("sh", "-n", str(tmp_path / "out" / "x"))


def test_check_without_gate_is_a_configuration_error(
    tmp_path: Path, linux_host: HostCapabilities
) -> None:
    content = tmp_path / "content"
    content.write_bytes(b"")

    with pytest.raises(RuntimeError, match="no CheckGate"):
        ShebangBuilder(capabilities=linux_host).build(
            interpreter="/bin/sh",
            content_path=content,
            scratch_dir=tmp_path,
            leaf_name="x",
            check=CheckCommand(("true",)),
        )


@pytest.mark.parametrize(
    ("platform", "mode", "expected"),
    [
        ("darwin", CapabilityMode.AUTO, True),
        ("linux", CapabilityMode.AUTO, False),
        ("linux", CapabilityMode.ALWAYS, True),
        ("darwin", "never", False),
    ],
)
def test_host_capability_resolution(platform: str, mode: CapabilityMode | str, expected: bool) -> None:
    caps = HostCapabilities.resolve(
        interpreter_chaining=mode, post_link_fixup=mode, platform=platform
    )
    assert caps.requires_interpreter_chaining is expected
    assert caps.requires_post_link_fixup is expected
