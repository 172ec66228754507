"""
exec-writers: hashing utilities

File: src/exec_writers/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes, text, and files.
- Convert between hex digests and SRI (``sha256-<base64>``) strings used to pin
  generated content.

Functional requirements
- Pins are accepted as SRI, ``sha256:<hex>`` or bare 64-character hex and
  normalized to SRI before comparison.
- The all-``A`` placeholder hash is recognised as "not pinned yet".

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import string
from pathlib import Path

from exec_writers.constants import FAKE_SRI_HASH

PathLike = str | os.PathLike[str]

_SHA256_HEX_LENGTH = 64
_SHA256_DIGEST_BYTES = 32
_FILE_READ_CHUNK_BYTES = 1024 * 1024
_HEX_DIGITS = set(string.hexdigits)
_SRI_PREFIX = "sha256-"

__all__ = [
    "is_placeholder_hash",
    "normalize_sri_hash",
    "sha256_bytes",
    "sha256_file",
    "sha256_text",
    "sri_from_hex",
    "sri_sha256_bytes",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def sha256_file(path: PathLike, *, chunk_size: int = _FILE_READ_CHUNK_BYTES) -> str:
    """Return SHA-256 hex digest for a file read in chunks."""

    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    digest = hashlib.sha256()
    with Path(path).open("rb") as file_handle:
        while True:
            chunk = file_handle.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


def sri_sha256_bytes(data: bytes) -> str:
    """Return the SRI form (``sha256-<base64>``) of the SHA-256 of ``data``."""

    return _SRI_PREFIX + base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def sri_from_hex(hex_digest: str) -> str:
    """Convert a 64-character hex digest to SRI form."""

    normalized = hex_digest.strip().lower()
    if len(normalized) != _SHA256_HEX_LENGTH or not set(normalized).issubset(_HEX_DIGITS):
        raise ValueError(f"invalid SHA-256 hex digest: {hex_digest!r}")
    return _SRI_PREFIX + base64.b64encode(bytes.fromhex(normalized)).decode("ascii")


def normalize_sri_hash(value: str) -> str:
    """
    Normalize a pinned hash to SRI form.

    Accepted inputs:
    - ``sha256-<base64>``
    - ``sha256:<hex>``
    - bare 64-character hex
    """

    if not isinstance(value, str):
        raise ValueError("hash must be a string")
    candidate = value.strip()
    if not candidate:
        raise ValueError("hash must not be empty")

    if candidate.startswith(_SRI_PREFIX):
        encoded = candidate[len(_SRI_PREFIX) :]
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"invalid SRI hash: {value!r}") from exc
        if len(raw) != _SHA256_DIGEST_BYTES:
            raise ValueError(f"SRI hash does not encode a SHA-256 digest: {value!r}")
        return _SRI_PREFIX + base64.b64encode(raw).decode("ascii")

    if candidate.lower().startswith("sha256:"):
        candidate = candidate.split(":", 1)[1]
    return sri_from_hex(candidate)


def is_placeholder_hash(value: str | None) -> bool:
    """Return ``True`` for an absent pin or the all-``A`` placeholder hash."""

    if value is None:
        return True
    stripped = value.strip()
    return not stripped or stripped == FAKE_SRI_HASH
