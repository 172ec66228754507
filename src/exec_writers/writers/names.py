"""Classify a caller-supplied name as an explicit path or a bare name."""

from __future__ import annotations

from exec_writers.domain.models import BareName, ExplicitPath, Target
from exec_writers.errors import InvalidNameError


def resolve_name(name_or_path: str) -> Target:
    """Resolve ``name_or_path`` into a target, once.

    A leading ``/`` means "place the artifact at exactly this path under the
    output root". Anything else is a bare name, discoverable at the root.

    >>> resolve_name("hello").final_relative_path
    PurePosixPath('bin/hello')
    >>> resolve_name("/bin/tool").final_relative_path
    PurePosixPath('bin/tool')
    """

    if isinstance(name_or_path, (BareName, ExplicitPath)):
        return name_or_path
    if not isinstance(name_or_path, str):
        raise InvalidNameError(repr(name_or_path), "name must be a string")
    if name_or_path.startswith("/"):
        return ExplicitPath(name_or_path)
    return BareName(name_or_path)


__all__ = ["resolve_name"]
