"""Utility exports for filesystem and hashing helpers."""

from exec_writers.utils.fs import (
    atomic_write,
    is_within,
    make_executable,
    make_read_only,
    move_into_place,
    private_file,
    temp_directory,
)
from exec_writers.utils.hashing import (
    is_placeholder_hash,
    normalize_sri_hash,
    sha256_bytes,
    sha256_file,
    sha256_text,
    sri_from_hex,
    sri_sha256_bytes,
)

__all__ = [
    "atomic_write",
    "is_placeholder_hash",
    "is_within",
    "make_executable",
    "make_read_only",
    "move_into_place",
    "normalize_sri_hash",
    "private_file",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
    "sri_from_hex",
    "sri_sha256_bytes",
    "temp_directory",
]
