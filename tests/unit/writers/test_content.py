"""Unit tests for content materialization."""

from __future__ import annotations

import stat
from typing import TYPE_CHECKING

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from exec_writers.domain.models import FileRef, Inline
from exec_writers.writers.content import materialize, read_content

if TYPE_CHECKING:
    from pathlib import Path


@given(payload=st.binary(max_size=512))
@settings(
    max_examples=40,
    derandomize=True,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
def test_property_inline_bytes_are_materialized_losslessly(payload: bytes, tmp_path: Path) -> None:
    with materialize(Inline(payload), tmp_path) as path:
        assert path.read_bytes() == payload
        assert path.parent == tmp_path
    assert not path.exists()


def test_inline_text_is_utf8_and_private(tmp_path: Path) -> None:
    with materialize(Inline("naïve\n"), tmp_path) as path:
        assert path.read_bytes() == "naïve\n".encode()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_file_ref_is_used_in_place(tmp_path: Path) -> None:
    source = tmp_path / "source.sh"
    source.write_bytes(b"echo hi\n")
    scratch = tmp_path / "scratch"
    scratch.mkdir()

    with materialize(FileRef(source), scratch) as path:
        assert path == source
    assert source.exists()
    assert list(scratch.iterdir()) == []


def test_missing_file_ref_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError), materialize(FileRef(tmp_path / "nope"), tmp_path):
        pass


def test_read_content_handles_both_variants(tmp_path: Path) -> None:
    source = tmp_path / "payload"
    source.write_bytes(b"\x00\x01")
    assert read_content(FileRef(source)) == b"\x00\x01"
    assert read_content(Inline("x")) == b"x"
