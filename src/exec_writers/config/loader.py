"""
exec-writers: runtime config loader.

File: src/exec_writers/config/loader.py

Purpose
- Build the effective config for one CLI invocation by layering, lowest first:
  built-in defaults, ``exec-writers.toml``, ``EXEC_WRITERS_*`` environment
  variables, CLI flags.

Functional requirements
- Every layer is validated against the schema; an environment value is coerced
  to the type of the setting it overrides.
- Command settings (``build.strip_command``, ``generator.command``, ...) take a
  shell-quoted string in the environment.
- Path settings resolve against the directory of the config file, or the
  working directory when there is none.
"""

from __future__ import annotations

import json
import os
import shlex
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from exec_writers.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "exec-writers.toml"
ENV_PREFIX: Final[str] = "EXEC_WRITERS_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})
_NOT_OVERRIDABLE: Final[frozenset[tuple[str, ...]]] = frozenset({("meta", "schema_version")})

_Coercer = Callable[[str], object]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Effective config: CLI > env > file > defaults.

    Without ``config_path`` a ``exec-writers.toml`` in the working directory is
    used if present; an explicit ``config_path`` must exist.
    """

    path = _config_file_path(config_path)
    from_file = _read_toml(path, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), from_file))

    env = os.environ if environ is None else environ
    config = merge_config(config, _env_layer(config, env))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    config = assert_valid_config(config)
    return assert_valid_config(normalize_paths(config, base_dir=path.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Make non-empty path settings absolute, relative to ``base_dir``."""

    normalized = merge_config({}, config)
    for field in PATH_FIELDS:
        section, key = field
        raw = normalized.get(section, {}).get(key)
        if isinstance(raw, str) and raw:
            normalized[section][key] = _absolute(raw, base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def env_name_for_path(path: tuple[str, ...]) -> str:
    """``("build", "strip_command")`` -> ``EXEC_WRITERS_BUILD_STRIP_COMMAND``."""

    return ENV_PREFIX + "_".join(part.upper() for part in path)


# ---------------------------------------------------------------------------
# Layers
# ---------------------------------------------------------------------------


def _config_file_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for setting, current in _settings(config):
        if setting in _NOT_OVERRIDABLE:
            continue
        env_name = env_name_for_path(setting)
        raw = environ.get(env_name)
        if raw is None:
            continue
        coerce = _coercer_for(current)
        if coerce is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} -> {'.'.join(setting)}: {exc}") from exc
        _assign(layer, setting, value)
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        value = overrides[dotted]
        if value is None:
            continue
        setting = tuple(part for part in dotted.split(".") if part)
        if not setting:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _assign(layer, setting, value)
    return layer


def _settings(
    node: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key in sorted(node):
        value = node[key]
        if isinstance(value, Mapping):
            yield from _settings(value, (*prefix, key))
        else:
            yield (*prefix, key), value


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------


def _coercer_for(current: object) -> _Coercer | None:
    # bool before int: bool is an int subclass
    if isinstance(current, bool):
        return _to_bool
    if isinstance(current, int):
        return _to_int
    if isinstance(current, float):
        return _to_float
    if isinstance(current, str):
        return str
    if isinstance(current, list):
        return _to_argv
    return None


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _to_argv(raw: str) -> list[str]:
    try:
        return shlex.split(raw)
    except ValueError as exc:
        raise ValueError(f"is not a valid command: {exc}") from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _assign(target: dict[str, Any], setting: tuple[str, ...], value: object) -> None:
    *sections, leaf = setting
    for section in sections:
        child = target.get(section)
        if not isinstance(child, dict):
            child = target[section] = {}
        target = child
    target[leaf] = value


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
