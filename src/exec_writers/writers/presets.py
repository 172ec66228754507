"""
exec-writers: language writer presets

File: src/exec_writers/writers/presets.py

Purpose
- Ready-made script and compiled-artifact settings for common languages.

Functional requirements
- Every toolchain path is a factory parameter; nothing is looked up on PATH
  here. ``resolve_toolchain`` is the one helper that searches PATH, and only
  callers that want a default (the CLI) use it.
- Each preset builds specs for a bare name or for ``/bin/<name>``.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from exec_writers.domain.models import ArtifactSpec, FileRef, Inline
from exec_writers.writers.content import read_content
from exec_writers.writers.names import resolve_name
from exec_writers.writers.pipeline import (
    BinWriterConfig,
    ContentInput,
    ScriptWriterConfig,
    as_content,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from exec_writers.domain.models import Content, FinalArtifact
    from exec_writers.writers.pipeline import ArtifactWriter


def _bin_path(name: str) -> str:
    return f"/bin/{name}"


def _surround(content: Content, prefix: bytes, suffix: bytes = b"") -> Content:
    if not prefix and not suffix:
        return content
    body = read_content(content) if isinstance(content, FileRef) else content.as_bytes()
    if suffix and body and not body.endswith(b"\n"):
        body += b"\n"
    return Inline(prefix + body + suffix)


@dataclass(frozen=True, slots=True)
class ScriptPreset:
    """An interpreted writer preset.

    ``content_prefix`` and ``content_suffix`` surround the user's content
    before anything else happens; Guile's meta switch and the F# ``exit 0``
    trailer need them.
    """

    preset: str
    config: ScriptWriterConfig
    content_prefix: bytes = b""
    content_suffix: bytes = b""

    def spec(self, name_or_path: str, content: ContentInput) -> ArtifactSpec:
        return self.config.spec(
            name_or_path,
            _surround(as_content(content), self.content_prefix, self.content_suffix),
        )

    def spec_bin(self, name: str, content: ContentInput) -> ArtifactSpec:
        return self.spec(_bin_path(name), content)

    def write(self, writer: ArtifactWriter, name_or_path: str, content: ContentInput) -> FinalArtifact:
        return writer.write(self.spec(name_or_path, content))

    def write_bin(self, writer: ArtifactWriter, name: str, content: ContentInput) -> FinalArtifact:
        return self.write(writer, _bin_path(name), content)


@dataclass(frozen=True, slots=True)
class BinPreset:
    """A compiled writer preset."""

    preset: str
    config: BinWriterConfig

    def spec(self, name_or_path: str, content: ContentInput) -> ArtifactSpec:
        return self.config.spec(name_or_path, content)

    def spec_bin(self, name: str, content: ContentInput) -> ArtifactSpec:
        return self.spec(_bin_path(name), content)

    def write(self, writer: ArtifactWriter, name_or_path: str, content: ContentInput) -> FinalArtifact:
        return writer.write(self.spec(name_or_path, content))

    def write_bin(self, writer: ArtifactWriter, name: str, content: ContentInput) -> FinalArtifact:
        return self.write(writer, _bin_path(name), content)


@dataclass(frozen=True, slots=True)
class FSharpPreset:
    """F# script run by ``dotnet fsi`` through a generated bash wrapper.

    The wrapper is an artifact of its own at ``/libexec/fsi-<stem>`` and is
    the script's interpreter, so hosts that cannot run a script as an
    interpreter get a chained ``#!`` line. Names are forced to end in
    ``.fsx``; content is followed by ``exit 0``.
    """

    preset: str
    dotnet_path: str
    bash: ScriptPreset
    fsi_flags: tuple[str, ...] = ()
    check: tuple[str, ...] | None = None
    wrap_args: tuple[str, ...] = ()

    def script_path(self, name_or_path: str) -> str:
        return name_or_path if name_or_path.endswith(".fsx") else f"{name_or_path}.fsx"

    def fsi_path(self, name_or_path: str) -> str:
        leaf = resolve_name(self.script_path(name_or_path)).leaf_name
        return f"/libexec/fsi-{leaf.removesuffix('.fsx')}"

    def fsi_wrapper(self) -> str:
        command = shlex.join(
            [self.dotnet_path, "fsi", "--quiet", "--nologo", "--readline-", *self.fsi_flags]
        )
        return (
            "set -euo pipefail\n"
            "export DOTNET_SKIP_FIRST_TIME_EXPERIENCE=1\n"
            "export DOTNET_CLI_TELEMETRY_OPTOUT=1\n"
            "export DOTNET_NOLOGO=1\n"
            "export DOTNET_SKIP_WORKLOAD_INTEGRITY_CHECK=1\n"
            'script="$1"; shift\n'
            f'exec {command} "$@" < "$script"\n'
        )

    def script(self, fsi_interpreter: str) -> ScriptPreset:
        preset = _script(self.preset, fsi_interpreter, self.check, self.wrap_args)
        return replace(preset, content_suffix=b"exit 0\n")

    def write(self, writer: ArtifactWriter, name_or_path: str, content: ContentInput) -> FinalArtifact:
        """Place the fsi wrapper, then the script that uses it as interpreter."""

        path = self.script_path(name_or_path)
        fsi = self.bash.write(writer, self.fsi_path(path), self.fsi_wrapper())
        return self.script(str(fsi.real_path)).write(writer, path, content)

    def write_bin(self, writer: ArtifactWriter, name: str, content: ContentInput) -> FinalArtifact:
        return self.write(writer, _bin_path(name), content)


Preset = ScriptPreset | BinPreset | FSharpPreset


def _script(
    preset: str,
    interpreter: str,
    check: Sequence[str] | None,
    wrap_args: Sequence[str],
    content_prefix: bytes = b"",
) -> ScriptPreset:
    return ScriptPreset(
        preset=preset,
        config=ScriptWriterConfig(
            interpreter=interpreter,
            check=tuple(check) if check else None,
            wrap_args=tuple(wrap_args),
        ),
        content_prefix=content_prefix,
    )


def _compiled(
    preset: str,
    compile_command: str | Sequence[str],
    strip: bool,
    wrap_args: Sequence[str],
) -> BinPreset:
    command = compile_command if isinstance(compile_command, str) else tuple(compile_command)
    return BinPreset(
        preset=preset,
        config=BinWriterConfig(compile_command=command, strip=strip, wrap_args=tuple(wrap_args)),
    )


# --------------------------------------------------------------------------- shells


def bash(bash_path: str, *, check: Sequence[str] | None = None, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    return _script("bash", bash_path, check, wrap_args)


def dash(dash_path: str, *, check: Sequence[str] | None = None, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    return _script("dash", dash_path, check, wrap_args)


def fish(fish_path: str, *, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    """Fish without user config; the check parses the script without running it."""

    return _script(
        "fish",
        f"{fish_path} --no-config",
        (fish_path, "--no-config", "--no-execute"),
        wrap_args,
    )


def nu(nu_path: str, *, check: Sequence[str] | None = None, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    return _script("nu", f"{nu_path} --no-config-file", check, wrap_args)


# --------------------------------------------------------------------------- lisps


def babashka(
    bb_path: str,
    *,
    check: Sequence[str] | None = ("clj-kondo", "--lint"),
    wrap_args: Sequence[str] = (),
) -> ScriptPreset:
    """Babashka script linted with clj-kondo; pass ``check=None`` to skip linting."""

    return _script("babashka", bb_path, check, wrap_args)


def guile(
    guile_path: str,
    *,
    library_root: str | None = None,
    site_dir: str = "share/guile/site/3.0",
    site_ccache_dir: str = "lib/guile/3.0/site-ccache",
    r6rs: bool = False,
    r7rs: bool = False,
    srfi: Sequence[int] = (),
    check: Sequence[str] | None = None,
    wrap_args: Sequence[str] = (),
) -> ScriptPreset:
    """Guile script using the meta switch.

    Guile reads the second line of the file for its real arguments, so the
    interpreter line ends in ``\\`` and the content gets a
    ``<flags> -s`` / ``!#`` preamble. Spacing in the preamble is significant.
    With ``library_root`` the load paths of that tree are exported through
    the wrapper.
    """

    if not all(isinstance(number, int) and not isinstance(number, bool) for number in srfi):
        raise ValueError("srfi entries must be integers")

    flags = ["--no-auto-compile"]
    if r6rs:
        flags.append("--r6rs")
    if r7rs:
        flags.append("--r7rs")
    if srfi:
        flags.append("--use-srfi=" + ",".join(str(number) for number in srfi))
    flags.append("-s")
    prefix = (" ".join(flags) + "\n!#\n").encode("utf-8")

    extra: list[str] = []
    if library_root is not None:
        root = library_root.rstrip("/")
        extra = [
            "--set", "GUILE_LOAD_PATH", f"{root}/{site_dir}:{root}/lib/scheme-libs",
            "--set", "GUILE_LOAD_COMPILED_PATH", f"{root}/{site_ccache_dir}:{root}/lib/libobj",
            "--set", "LD_LIBRARY_PATH", f"{root}/lib/ffi",
            "--set", "DYLD_LIBRARY_PATH", f"{root}/lib/ffi",
        ]
    return _script("guile", f"{guile_path} \\", check, [*extra, *wrap_args], prefix)


# --------------------------------------------------------------------------- general purpose


def perl(perl_path: str, *, check: Sequence[str] | None = None, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    return _script("perl", perl_path, check, wrap_args)


def ruby(ruby_path: str, *, check: Sequence[str] | None = None, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    return _script("ruby", ruby_path, check, wrap_args)


def lua(lua_path: str, *, luacheck: str | None = "luacheck", wrap_args: Sequence[str] = ()) -> ScriptPreset:
    """Lua script checked with luacheck unless ``luacheck`` is ``None``."""

    return _script("lua", lua_path, (luacheck,) if luacheck else None, wrap_args)


def _python(
    preset: str,
    python_path: str,
    flake8: str | None,
    flake_ignore: Sequence[str],
    do_check: bool,
    wrap_args: Sequence[str],
) -> ScriptPreset:
    check: list[str] | None = None
    if do_check and flake8:
        check = [flake8, "--show-source"]
        if flake_ignore:
            check.extend(["--ignore", ",".join(flake_ignore)])
    return _script(preset, python_path, check, wrap_args)


def python3(
    python_path: str,
    *,
    flake8: str | None = "flake8",
    flake_ignore: Sequence[str] = (),
    do_check: bool = True,
    wrap_args: Sequence[str] = (),
) -> ScriptPreset:
    """Python 3 script linted with ``flake8 --show-source``."""

    return _python("python3", python_path, flake8, flake_ignore, do_check, wrap_args)


def pypy3(
    pypy_path: str,
    *,
    flake8: str | None = "flake8",
    flake_ignore: Sequence[str] = (),
    do_check: bool = True,
    wrap_args: Sequence[str] = (),
) -> ScriptPreset:
    return _python("pypy3", pypy_path, flake8, flake_ignore, do_check, wrap_args)


def js(node_path: str, *, node_modules: str | None = None, wrap_args: Sequence[str] = ()) -> ScriptPreset:
    """Node script; ``node_modules`` is exported as ``NODE_PATH`` through the wrapper."""

    extra = ["--set", "NODE_PATH", node_modules] if node_modules else []
    return _script("js", node_path, None, [*extra, *wrap_args])


def fsharp(
    dotnet_path: str,
    *,
    bash_path: str = "/bin/bash",
    fsi_flags: Sequence[str] = (),
    check: Sequence[str] | None = None,
    wrap_args: Sequence[str] = (),
) -> FSharpPreset:
    """F# script; ``fsi_flags`` are appended to ``dotnet fsi`` in the wrapper."""

    return FSharpPreset(
        preset="fsharp",
        dotnet_path=dotnet_path,
        bash=bash(bash_path),
        fsi_flags=tuple(fsi_flags),
        check=tuple(check) if check else None,
        wrap_args=tuple(wrap_args),
    )


# --------------------------------------------------------------------------- compiled


def c(
    cc_path: str,
    *,
    cc_args: Sequence[str] = (),
    strip: bool = True,
    wrap_args: Sequence[str] = (),
) -> BinPreset:
    """C source compiled with ``cc``; ``cc_args`` follow the source so libraries link."""

    command = (cc_path, "-o", "$out", "-x", "c", "$contentPath", "-x", "none", *cc_args)
    return _compiled("c", command, strip, wrap_args)


def rust(
    rustc_path: str,
    *,
    rustc_args: Sequence[str] = (),
    strip: bool = True,
    wrap_args: Sequence[str] = (),
) -> BinPreset:
    script = (
        'cp "$contentPath" tmp.rs && '
        f'{shlex.join([rustc_path, *rustc_args])} -o "$out" tmp.rs'
    )
    return _compiled("rust", script, strip, wrap_args)


def haskell(
    ghc_path: str,
    *,
    ghc_args: Sequence[str] = (),
    threaded_runtime: bool = True,
    strip: bool = True,
    wrap_args: Sequence[str] = (),
) -> BinPreset:
    args = list(ghc_args)
    if threaded_runtime and "-threaded" not in args:
        args.append("-threaded")
    script = (
        'cp "$contentPath" tmp.hs && '
        f"{shlex.join([ghc_path, *args])} tmp.hs && "
        'mv tmp "$out"'
    )
    return _compiled("haskell", script, strip, wrap_args)


def nim_compile_args(options: Mapping[str, str | bool]) -> list[str]:
    """Render Nim options GNU style with ``:`` as the value separator.

    >>> nim_compile_args({"d": "release", "nimcache": "."})
    ['-d:release', '--nimcache:.']
    """

    rendered: list[str] = []
    for key, value in options.items():
        if value is False:
            continue
        flag = f"-{key}" if len(key) == 1 else f"--{key}"
        rendered.append(flag if value is True else f"{flag}:{value}")
    return rendered


def nim(
    nim_path: str,
    *,
    compile_options: Mapping[str, str | bool] | None = None,
    strip: bool = True,
    wrap_args: Sequence[str] = (),
) -> BinPreset:
    options: dict[str, str | bool] = {"d": "release", "nimcache": "."}
    options.update(compile_options or {})
    script = (
        'cp "$contentPath" tmp.nim && '
        f"{shlex.join([nim_path, 'compile', *nim_compile_args(options)])} tmp.nim && "
        'mv tmp "$out"'
    )
    return _compiled("nim", script, strip, wrap_args)


# --------------------------------------------------------------------------- registry


@dataclass(frozen=True, slots=True)
class PresetInfo:
    factory: Callable[..., Preset]
    program: str
    kind: str
    summary: str
    helpers: Mapping[str, str] = field(default_factory=dict)


PRESETS: dict[str, PresetInfo] = {
    "bash": PresetInfo(bash, "bash", "script", "Bash script"),
    "dash": PresetInfo(dash, "dash", "script", "Dash script"),
    "fish": PresetInfo(fish, "fish", "script", "Fish script, syntax-checked with --no-execute"),
    "nu": PresetInfo(nu, "nu", "script", "Nushell script"),
    "babashka": PresetInfo(babashka, "bb", "script", "Babashka script, linted with clj-kondo"),
    "guile": PresetInfo(guile, "guile", "script", "Guile script using the meta switch"),
    "perl": PresetInfo(perl, "perl", "script", "Perl script"),
    "ruby": PresetInfo(ruby, "ruby", "script", "Ruby script"),
    "lua": PresetInfo(lua, "lua", "script", "Lua script, checked with luacheck"),
    "python3": PresetInfo(python3, "python3", "script", "Python 3 script, linted with flake8"),
    "pypy3": PresetInfo(pypy3, "pypy3", "script", "PyPy 3 script, linted with flake8"),
    "js": PresetInfo(js, "node", "script", "Node.js script"),
    "fsharp": PresetInfo(
        fsharp, "dotnet", "chained", "F# script run by dotnet fsi", {"bash_path": "bash"}
    ),
    "c": PresetInfo(c, "cc", "compiled", "C program built with cc"),
    "rust": PresetInfo(rust, "rustc", "compiled", "Rust program built with rustc"),
    "haskell": PresetInfo(haskell, "ghc", "compiled", "Haskell program built with ghc"),
    "nim": PresetInfo(nim, "nim", "compiled", "Nim program built with nim compile"),
}


def resolve_toolchain(program: str) -> str:
    """Absolute path of ``program`` on PATH; raises ``FileNotFoundError`` if absent."""

    if program.startswith("/"):
        return program
    found = shutil.which(program)
    if found is None:
        raise FileNotFoundError(f"toolchain {program!r} not found on PATH")
    return found


def build_preset(preset: str, toolchain: str | None = None, **options: object) -> Preset:
    """Instantiate a registered preset, locating its toolchains on PATH if not given."""

    info = PRESETS.get(preset)
    if info is None:
        known = ", ".join(sorted(PRESETS))
        raise KeyError(f"unknown preset {preset!r} (known: {known})")
    for option, program in info.helpers.items():
        if options.get(option) is None:
            options[option] = resolve_toolchain(program)
    return info.factory(resolve_toolchain(toolchain or info.program), **options)


__all__ = [
    "BinPreset",
    "FSharpPreset",
    "PRESETS",
    "Preset",
    "PresetInfo",
    "ScriptPreset",
    "babashka",
    "bash",
    "build_preset",
    "c",
    "dash",
    "fish",
    "fsharp",
    "guile",
    "haskell",
    "js",
    "lua",
    "nim",
    "nim_compile_args",
    "nu",
    "perl",
    "pypy3",
    "python3",
    "resolve_toolchain",
    "ruby",
    "rust",
]
