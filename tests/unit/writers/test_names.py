"""Unit tests for bare-name and explicit-path classification."""

from __future__ import annotations

import pytest

from exec_writers.domain.models import BareName, ExplicitPath
from exec_writers.errors import InvalidNameError
from exec_writers.writers.names import resolve_name


def test_leading_slash_selects_explicit_path() -> None:
    assert resolve_name("/share/run") == ExplicitPath("/share/run")
    assert resolve_name("run") == BareName("run")


def test_bare_name_and_bin_path_share_a_final_location() -> None:
    assert resolve_name("/bin/x").final_relative_path == resolve_name("x").final_relative_path
    assert resolve_name("/bin/x").symlink_relative_path is None
    assert resolve_name("x").symlink_relative_path is not None


def test_already_resolved_targets_pass_through() -> None:
    target = BareName("tool")
    assert resolve_name(target) is target  # type: ignore[arg-type]


@pytest.mark.parametrize("value", [None, 3, b"name"])
def test_non_string_names_are_rejected(value: object) -> None:
    with pytest.raises(InvalidNameError, match="must be a string"):
        resolve_name(value)  # type: ignore[arg-type]


def test_relative_paths_with_separators_are_not_bare_names() -> None:
    with pytest.raises(InvalidNameError):
        resolve_name("sub/dir")
