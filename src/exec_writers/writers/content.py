"""Give build steps a stable filesystem path to the artifact payload."""

from __future__ import annotations

import contextlib
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from exec_writers.domain.models import Content, FileRef, Inline
from exec_writers.utils.fs import private_file

if TYPE_CHECKING:
    from collections.abc import Iterator


@contextmanager
def materialize(content: Content, scratch_dir: Path) -> Iterator[Path]:
    """Yield a path whose bytes are exactly the content's bytes.

    Inline content is written unmodified to a ``0600`` file inside
    ``scratch_dir`` and removed on exit; file references are yielded as-is.
    """

    if isinstance(content, FileRef):
        if not content.path.is_file():
            raise FileNotFoundError(f"content file does not exist: {content.path}")
        yield content.path
        return

    if not isinstance(content, Inline):
        raise TypeError(f"unsupported content type: {type(content).__name__}")

    path = private_file(scratch_dir, content.as_bytes(), prefix="content-")
    try:
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            path.unlink()


def read_content(content: Content) -> bytes:
    """Return the content's bytes without materializing a file."""

    if isinstance(content, FileRef):
        return content.path.read_bytes()
    return content.as_bytes()


__all__ = ["materialize", "read_content"]
