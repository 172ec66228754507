"""ELF inspection used to confirm a strip step removed debug sections."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

_ELF_MAGIC = b"\x7fELF"


@dataclass(frozen=True, slots=True)
class DebugPresence:
    is_elf: bool
    debug_sections: tuple[str, ...] = ()

    @property
    def has_debug_sections(self) -> bool:
        return bool(self.debug_sections)


def is_elf(path: Path) -> bool:
    with path.open("rb") as handle:
        return handle.read(len(_ELF_MAGIC)) == _ELF_MAGIC


def debug_sections(path: Path) -> DebugPresence:
    """List ``.debug_*`` sections. Non-ELF files (Mach-O, scripts) report ``is_elf=False``."""

    if not is_elf(path):
        return DebugPresence(is_elf=False)
    with path.open("rb") as handle:
        try:
            elf = ELFFile(handle)
            names = tuple(
                section.name
                for section in elf.iter_sections()
                if section.name.startswith(".debug_")
            )
        except ELFError:
            return DebugPresence(is_elf=False)
    return DebugPresence(is_elf=True, debug_sections=names)


__all__ = ["DebugPresence", "debug_sections", "is_elf"]
