"""Unit tests for compiled builds: compile, strip, fixup."""

from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from exec_writers.errors import CompileFailedError
from exec_writers.host import HostCapabilities
from exec_writers.sandbox.executor import StepExecutor
from exec_writers.writers.compile import CompileBuilder, render_compile_command
from exec_writers.writers.elf import debug_sections, is_elf

_requires_sh = pytest.mark.skipif(shutil.which("sh") is None, reason="POSIX sh not available")


def _content(tmp_path: Path, data: bytes = b"#!/bin/sh\necho compiled\n") -> Path:
    path = tmp_path / "content.src"
    path.write_bytes(data)
    return path


def test_sequence_commands_get_placeholders_substituted() -> None:
    argv = render_compile_command(
        ["cc", "-o", "$out", "-x", "c", "$contentPath", "-DHOME=$HOME"],
        content_path=Path("/s/content"),
        out_path=Path("/s/out/x"),
    )
    assert argv == ("cc", "-o", "/s/out/x", "-x", "c", "/s/content", "-DHOME=$HOME")


def test_string_commands_run_through_sh() -> None:
    argv = render_compile_command('cc -o "$out" "$contentPath"', content_path=Path("a"), out_path=Path("b"))
    assert argv == ("/bin/sh", "-c", 'cc -o "$out" "$contentPath"')


@_requires_sh
def test_string_command_reads_placeholders_from_environment(
    tmp_path: Path, linux_host: HostCapabilities
) -> None:
    builder = CompileBuilder(StepExecutor(), capabilities=linux_host, strip_command=("true",))

    result = builder.build(
        compile_command='cp "$contentPath" "$out"',
        content_path=_content(tmp_path),
        scratch_dir=tmp_path,
        leaf_name="tool",
    )

    assert result.scratch_path == tmp_path / "out" / "tool"
    assert subprocess.run([str(result.scratch_path)], capture_output=True, check=True).stdout == b"compiled\n"


@_requires_sh
def test_compile_failure_surfaces_compiler_output(tmp_path: Path, linux_host: HostCapabilities) -> None:
    builder = CompileBuilder(StepExecutor(), capabilities=linux_host, strip_command=("true",))

    with pytest.raises(CompileFailedError) as exc_info:
        builder.build(
            compile_command="echo 'error: expected ;' >&2; exit 1",
            content_path=_content(tmp_path),
            scratch_dir=tmp_path,
            leaf_name="tool",
        )

    assert exc_info.value.step == "compile"
    assert exc_info.value.returncode == 1
    assert "error: expected ;" in exc_info.value.output


@_requires_sh
def test_missing_output_is_a_compile_failure(tmp_path: Path, linux_host: HostCapabilities) -> None:
    builder = CompileBuilder(StepExecutor(), capabilities=linux_host)

    with pytest.raises(CompileFailedError, match="did not produce"):
        builder.build(
            compile_command="true",
            content_path=_content(tmp_path),
            scratch_dir=tmp_path,
            leaf_name="tool",
            strip=False,
        )


@_requires_sh
def test_strip_failure_aborts_with_strip_step(tmp_path: Path, linux_host: HostCapabilities) -> None:
    builder = CompileBuilder(StepExecutor(), capabilities=linux_host, strip_command=("false",))

    with pytest.raises(CompileFailedError) as exc_info:
        builder.build(
            compile_command='cp "$contentPath" "$out"',
            content_path=_content(tmp_path),
            scratch_dir=tmp_path,
            leaf_name="tool",
        )

    assert exc_info.value.step == "strip"
    assert exc_info.value.command[-1] == str(tmp_path / "out" / "tool")


def test_steps_run_in_order_and_fixup_only_when_required(
    tmp_path: Path, fake_runner, fake_executor, step_result
) -> None:
    def handler(call):
        if call.command[0] == "/bin/sh":
            Path(call.env["out"]).write_bytes(b"binary")
        return step_result(call)

    fake_runner.handler = handler
    fixup_host = HostCapabilities(requires_interpreter_chaining=False, requires_post_link_fixup=True)
    builder = CompileBuilder(
        fake_executor,
        capabilities=fixup_host,
        strip_command=("strip", "-S"),
        fixup_command=("codesign", "-s", "-"),
    )

    builder.build(
        compile_command="cc",
        content_path=_content(tmp_path),
        scratch_dir=tmp_path,
        leaf_name="tool",
    )
    no_strip = CompileBuilder(fake_executor, capabilities=fixup_host, fixup_command=("fix",))
    no_strip.build(
        compile_command="cc",
        content_path=_content(tmp_path),
        scratch_dir=tmp_path,
        leaf_name="other",
        strip=False,
    )

    out = str(tmp_path / "out" / "tool")
    assert [call.command for call in fake_runner.calls] == [
        ("/bin/sh", "-c", "cc"),
        ("strip", "-S", out),
        ("codesign", "-s", "-", out),
        ("/bin/sh", "-c", "cc"),
        ("fix", str(tmp_path / "out" / "other")),
    ]
    assert fake_runner.calls[0].env["contentPath"] == str(tmp_path / "content.src")


def test_elf_detection_on_non_elf_file(tmp_path: Path) -> None:
    script = tmp_path / "script"
    script.write_bytes(b"#!/bin/sh\n")

    assert not is_elf(script)
    assert debug_sections(script).has_debug_sections is False


def test_elf_detection_on_running_interpreter() -> None:
    executable = Path(sys.executable).resolve()
    if not is_elf(executable):
        pytest.skip("interpreter binary is not ELF on this host")

    presence = debug_sections(executable)

    assert presence.is_elf is True
    assert all(name.startswith(".debug_") for name in presence.debug_sections)


@pytest.mark.skipif(
    shutil.which("cc") is None or shutil.which("strip") is None,
    reason="C toolchain not available",
)
def test_real_c_compile_and_strip(tmp_path: Path, linux_host: HostCapabilities) -> None:
    source = _content(tmp_path, b'#include <stdio.h>\nint main(void){puts("hi");return 0;}\n')
    builder = CompileBuilder(StepExecutor(), capabilities=linux_host)

    result = builder.build(
        compile_command=("cc", "-g", "-o", "$out", "-x", "c", "$contentPath"),
        content_path=source,
        scratch_dir=tmp_path,
        leaf_name="hi",
    )

    assert subprocess.run([str(result.scratch_path)], capture_output=True, check=True).stdout == b"hi\n"
    if is_elf(result.scratch_path):
        assert not debug_sections(result.scratch_path).has_debug_sections
