"""
exec-writers: CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Enforce CLI behavior for `python -m exec_writers` end to end.
- Verify exit codes, JSON output, the output tree and the run log.

What this test file should cover
- script/preset commands place artifacts and report them as JSON.
- generate fails first with the hash to pin, then seals when pinned.
- presets/config listings are deterministic JSON.
"""

from __future__ import annotations

import json
import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path

import pytest

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not Path("/bin/sh").exists(), reason="POSIX /bin/sh required"),
]

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"

_GENERATOR = (
    "import json, sys\n"
    "request = json.load(sys.stdin)\n"
    "print('echo generated ' + request['name'])\n"
)


def _run_cli(
    cwd: Path, *args: str, stdin: str | None = None, extra_env: dict[str, str] | None = None
) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("EXEC_WRITERS_")}
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath if not existing_pythonpath else f"{src_pythonpath}:{existing_pythonpath}"
    )
    env["NO_COLOR"] = "1"
    env.update(extra_env or {})
    return subprocess.run(
        [sys.executable, "-m", "exec_writers", *args],
        cwd=cwd,
        input=stdin,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _json(completed: subprocess.CompletedProcess[str]) -> dict[str, object]:
    return json.loads(completed.stdout.strip().splitlines()[-1])


def test_script_command_places_artifact_and_logs(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path, "script", "hello", "--interpreter", "/bin/sh", "--text", "echo hi", "--json"
    )

    assert completed.returncode == 0, completed.stderr
    payload = _json(completed)
    assert payload["command"] == "script"
    assert payload["status"] == "sealed"
    artifact = payload["artifact"]
    assert isinstance(artifact, dict)
    assert artifact["relative_path"] == "bin/hello"

    link = tmp_path / "out" / "hello"
    assert link.is_symlink()
    assert subprocess.run([str(link)], capture_output=True, check=True).stdout == b"hi\n"

    log_files = sorted((tmp_path / "logs").glob("*/exec-writers.jsonl"))
    assert log_files
    events = [json.loads(line)["message"] for line in log_files[-1].read_text().splitlines()]
    assert "writer.completed" in events


def test_script_command_reads_stdin_and_applies_wrapper(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path,
        "script",
        "greet",
        "--interpreter",
        "/bin/sh",
        "--wrap=--set GREETING hello",
        stdin='echo "$GREETING"\n',
    )

    assert completed.returncode == 0, completed.stderr
    assert "built" in completed.stdout
    result = subprocess.run(
        [str(tmp_path / "out" / "greet")], capture_output=True, check=True, env={}
    )
    assert result.stdout == b"hello\n"


def test_rejecting_check_exits_one(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path,
        "script",
        "hello",
        "--interpreter",
        "/bin/sh",
        "--check",
        "false",
        "--text",
        "echo hi",
    )

    assert completed.returncode == 1
    assert completed.stderr.startswith("error: check failed")
    assert not (tmp_path / "out" / "hello").exists()


def test_preset_command_with_explicit_toolchain(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path, "preset", "dash", "tool", "--toolchain", "/bin/sh", "--bin", "--text", "echo ok"
    )

    assert completed.returncode == 0, completed.stderr
    assert (tmp_path / "out" / "bin" / "tool").read_bytes().startswith(b"#!/bin/sh\n")
    assert not (tmp_path / "out" / "tool").exists()


@pytest.mark.skipif(shutil.which("cc") is None, reason="C compiler not available")
def test_compile_command_builds_binary(tmp_path: Path) -> None:
    source = tmp_path / "hello.c"
    source.write_text('#include <stdio.h>\nint main(void){puts("compiled");return 0;}\n')

    completed = _run_cli(
        tmp_path,
        "compile",
        "hello",
        "--compile-command",
        'cc -x c "$contentPath" -o "$out"',
        "--no-strip",
        "--file",
        str(source),
        "--json",
    )

    assert completed.returncode == 0, completed.stderr
    binary = tmp_path / "out" / "hello"
    assert subprocess.run([str(binary)], capture_output=True, check=True).stdout == b"compiled\n"


def test_generate_requires_pinning_the_observed_hash(tmp_path: Path) -> None:
    base_args = (
        "generate",
        "greet",
        "--prompt",
        "a script that greets",
        "--generator",
        shlex.join([sys.executable, "-c", _GENERATOR]),
    )
    env = {"EXEC_WRITERS_GENERATOR_FALLBACK_INTERPRETER": "/bin/sh"}

    first = _run_cli(tmp_path, *base_args, "--json", extra_env=env)

    assert first.returncode == 1
    mismatch = _json(first)
    assert mismatch["status"] == "hash_mismatch"
    assert mismatch["expected"] is None
    observed = mismatch["observed"]
    assert isinstance(observed, str) and observed.startswith("sha256-")
    assert not (tmp_path / "out" / "greet").exists()

    human = _run_cli(tmp_path, *base_args, extra_env=env)
    assert human.returncode == 1
    assert f"pin it with: --hash {observed}" in human.stderr

    pinned = _run_cli(tmp_path, *base_args, "--hash", observed, extra_env=env)

    assert pinned.returncode == 0, pinned.stderr
    greet = tmp_path / "out" / "greet"
    assert greet.read_bytes() == b"#!/bin/sh\necho generated greet\n"
    assert subprocess.run([str(greet)], capture_output=True, check=True).stdout == (
        b"generated greet\n"
    )


def test_failing_generator_exits_three(tmp_path: Path) -> None:
    completed = _run_cli(
        tmp_path,
        "generate",
        "greet",
        "--prompt",
        "anything",
        "--generator",
        shlex.join([sys.executable, "-c", "import sys; sys.exit(5)"]),
    )

    assert completed.returncode == 3
    assert "generator failed" in completed.stderr


def test_presets_json_is_sorted(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "presets", "--json")

    assert completed.returncode == 0
    presets = _json(completed)["presets"]
    assert isinstance(presets, list)
    names = [item["name"] for item in presets]
    assert names == sorted(names)
    assert {"bash", "python3", "c", "rust"} <= set(names)


def test_config_json_reflects_file_env_and_cli(tmp_path: Path) -> None:
    config_file = tmp_path / "exec-writers.toml"
    config_file.write_text(
        "[meta]\nschema_version = 1\n\n[build]\nstep_timeout_seconds = 12.5\n",
        encoding="utf-8",
    )

    completed = _run_cli(
        tmp_path,
        "config",
        "--json",
        "--output-root",
        "elsewhere",
        extra_env={"EXEC_WRITERS_GENERATOR_MODEL": "llama3"},
    )

    assert completed.returncode == 0, completed.stderr
    config = _json(completed)["config"]
    assert isinstance(config, dict)
    assert config["build"]["step_timeout_seconds"] == 12.5
    assert config["generator"]["model"] == "llama3"
    assert config["paths"]["output_root"] == str((tmp_path / "elsewhere").resolve())
