"""Host capability flags resolved once at startup."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from enum import StrEnum

_CHAINING_PLATFORMS = frozenset({"darwin"})
_FIXUP_PLATFORMS = frozenset({"darwin"})


class CapabilityMode(StrEnum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


@dataclass(frozen=True, slots=True)
class HostCapabilities:
    """Platform behaviour the writers must honour.

    ``requires_interpreter_chaining``: the kernel refuses a script as another
    script's interpreter, so the interpreter's own interpreter must be named
    on the shebang line.
    ``requires_post_link_fixup``: freshly linked or stripped binaries need a
    fixup pass (for example ad-hoc code signing) before they run.
    """

    requires_interpreter_chaining: bool = False
    requires_post_link_fixup: bool = False

    @classmethod
    def detect(cls, platform: str | None = None) -> HostCapabilities:
        name = sys.platform if platform is None else platform
        return cls(
            requires_interpreter_chaining=name in _CHAINING_PLATFORMS,
            requires_post_link_fixup=name in _FIXUP_PLATFORMS,
        )

    @classmethod
    def resolve(
        cls,
        *,
        interpreter_chaining: CapabilityMode | str = CapabilityMode.AUTO,
        post_link_fixup: CapabilityMode | str = CapabilityMode.AUTO,
        platform: str | None = None,
    ) -> HostCapabilities:
        detected = cls.detect(platform)
        return cls(
            requires_interpreter_chaining=_apply_mode(
                CapabilityMode(interpreter_chaining), detected.requires_interpreter_chaining
            ),
            requires_post_link_fixup=_apply_mode(
                CapabilityMode(post_link_fixup), detected.requires_post_link_fixup
            ),
        )


def _apply_mode(mode: CapabilityMode, detected: bool) -> bool:
    if mode is CapabilityMode.ALWAYS:
        return True
    if mode is CapabilityMode.NEVER:
        return False
    return detected


__all__ = ["CapabilityMode", "HostCapabilities"]
