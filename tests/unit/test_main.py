"""Unit tests for process exit-code routing at the CLI boundary."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from exec_writers.config.loader import ConfigLoadError
from exec_writers.config.schema import ConfigValidationError, ConfigValidationIssue
from exec_writers.errors import (
    CheckFailedError,
    CompileFailedError,
    GenerationFailedError,
    HashMismatchError,
    InvalidNameError,
    PlacementError,
    UnsupportedInterpreterChainError,
    WrapperArgumentError,
)
from exec_writers.main import ExitCode, cli_entrypoint, route_exception


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("EXEC_WRITERS_"):
            monkeypatch.delenv(name)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (
            CheckFailedError(command=("sh", "-n"), returncode=2, stdout="", stderr="bad"),
            ExitCode.BUILD_REJECTED,
        ),
        (
            CompileFailedError(command=("cc",), returncode=1, stdout="", stderr="", step="strip"),
            ExitCode.BUILD_REJECTED,
        ),
        (HashMismatchError(observed="sha256-x=", expected=None), ExitCode.BUILD_REJECTED),
        (PlacementError("/out/bin/x", "modified since placement"), ExitCode.BUILD_REJECTED),
        (
            GenerationFailedError(command=("gen",), returncode=None, stdout="", stderr="", timed_out=True),
            ExitCode.GENERATION_FAILED,
        ),
        (InvalidNameError("a/b", "contains '/'"), ExitCode.CONFIG_ERROR),
        (WrapperArgumentError("--set expects 2 arguments"), ExitCode.CONFIG_ERROR),
        (UnsupportedInterpreterChainError("/a/script", "/b/script"), ExitCode.CONFIG_ERROR),
        (ConfigLoadError("config file not found"), ExitCode.CONFIG_ERROR),
        (
            ConfigValidationError([ConfigValidationIssue("build.step_timeout_seconds", "bad")]),
            ExitCode.CONFIG_ERROR,
        ),
        (FileNotFoundError("missing"), ExitCode.CONFIG_ERROR),
        (RuntimeError("boom"), ExitCode.INTERNAL_ERROR),
    ],
)
def test_route_exception_maps_error_types(exc: BaseException, expected: ExitCode) -> None:
    assert route_exception(exc) is expected


def test_route_exception_follows_cause_chain() -> None:
    try:
        try:
            raise HashMismatchError(observed="sha256-x=", expected="sha256-y=")
        except HashMismatchError as inner:
            raise RuntimeError("wrapped") from inner
    except RuntimeError as outer:
        assert route_exception(outer) is ExitCode.BUILD_REJECTED


def test_presets_listing_succeeds(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["presets"]) == 0
    out = capsys.readouterr().out
    assert "python3" in out
    assert "rust" in out


def test_missing_content_file_is_a_caller_error(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(
        ["script", "hello", "--interpreter", "/bin/sh", "--file", "/definitely/missing.sh"]
    )

    assert code == 2
    assert "content file does not exist" in capsys.readouterr().err


def test_argparse_usage_error_exits_two(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["script", "hello"]) == 2
    assert "--interpreter" in capsys.readouterr().err


def test_invalid_name_routes_to_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli_entrypoint(["script", "has space", "--interpreter", "/bin/sh", "--text", "true"])

    assert code == 2
    assert capsys.readouterr().err.startswith("error: invalid artifact name")


def test_missing_explicit_config_is_a_config_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["config", "--config", "nope.toml"]) == 2
    assert "config file not found" in capsys.readouterr().err
