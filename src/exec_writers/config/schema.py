"""
exec-writers: configuration schema and validation.

File: src/exec_writers/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown keys; embedded secrets are refused outright.
- Deterministic deep-merge helpers for layering defaults, file, env and CLI.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from exec_writers.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_FALLBACK_INTERPRETER,
    DEFAULT_FIXUP_COMMAND,
    DEFAULT_GENERATOR_HOST,
    DEFAULT_GENERATOR_MODEL,
    DEFAULT_GENERATOR_PORT,
    DEFAULT_GENERATOR_TIMEOUT_SECONDS,
    DEFAULT_STEP_TIMEOUT_SECONDS,
    DEFAULT_STRIP_COMMAND,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_WRAPPER_SHELL,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_CAPABILITY_MODES: Final[tuple[str, ...]] = ("auto", "always", "never")
_LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
    "token",
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "output_root"),
    ("paths", "scratch_dir"),
    ("paths", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PathsConfig(TypedDict):
    output_root: str
    scratch_dir: str
    log_dir: str


class PlatformConfig(TypedDict):
    interpreter_chaining: Literal["auto", "always", "never"]
    post_link_fixup: Literal["auto", "always", "never"]


class BuildConfig(TypedDict):
    step_timeout_seconds: float
    strip_command: list[str]
    fixup_command: list[str]
    wrapper_shell: str


class GeneratorConfig(TypedDict):
    command: list[str]
    model: str
    host: str
    port: int
    timeout_seconds: float
    system_prompt: str
    fallback_interpreter: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_to_stdout: bool
    redact_secrets: bool


class WritersConfig(TypedDict):
    meta: MetaConfig
    paths: PathsConfig
    platform: PlatformConfig
    build: BuildConfig
    generator: GeneratorConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[WritersConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "paths": {
        "output_root": "out/",
        "scratch_dir": "",
        "log_dir": "logs/",
    },
    "platform": {
        "interpreter_chaining": "auto",
        "post_link_fixup": "auto",
    },
    "build": {
        "step_timeout_seconds": DEFAULT_STEP_TIMEOUT_SECONDS,
        "strip_command": list(DEFAULT_STRIP_COMMAND),
        "fixup_command": list(DEFAULT_FIXUP_COMMAND),
        "wrapper_shell": DEFAULT_WRAPPER_SHELL,
    },
    "generator": {
        # Empty means "run the bundled Ollama client with the current interpreter".
        "command": [],
        "model": DEFAULT_GENERATOR_MODEL,
        "host": DEFAULT_GENERATOR_HOST,
        "port": DEFAULT_GENERATOR_PORT,
        "timeout_seconds": DEFAULT_GENERATOR_TIMEOUT_SECONDS,
        "system_prompt": DEFAULT_SYSTEM_PROMPT,
        "fallback_interpreter": DEFAULT_FALLBACK_INTERPRETER,
    },
    "observability": {
        "log_level": "INFO",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> WritersConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade exec-writers.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade exec-writers"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "paths": _validate_paths,
        "platform": _validate_platform,
        "build": _validate_build,
        "generator": _validate_generator,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(root, set(validators), "", issues)
    _require_keys(root, set(validators), "", issues)

    normalized: dict[str, Any] = {}
    for key in sorted(validators):
        raw = root.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        normalized[key] = validators[key](section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_meta(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(payload["schema_version"], _join(path, "schema_version"), issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_paths(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"output_root", "scratch_dir", "log_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key not in payload:
            continue
        parsed = _as_path_text(
            payload[key], _join(path, key), issues, allow_empty=(key == "scratch_dir")
        )
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_platform(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"interpreter_chaining", "post_link_fixup"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_enum(
                payload[key], _join(path, key), issues, allowed_values=_CAPABILITY_MODES
            )
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_build(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"step_timeout_seconds", "strip_command", "fixup_command", "wrapper_shell"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "step_timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["step_timeout_seconds"], _join(path, "step_timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["step_timeout_seconds"] = parsed_timeout
    for key in ("strip_command", "fixup_command"):
        if key in payload:
            parsed_argv = _as_argv(payload[key], _join(path, key), issues, allow_empty=False)
            if parsed_argv is not None:
                out[key] = parsed_argv
    if "wrapper_shell" in payload:
        parsed_shell = _as_absolute_path(payload["wrapper_shell"], _join(path, "wrapper_shell"), issues)
        if parsed_shell is not None:
            out["wrapper_shell"] = parsed_shell
    return out


def _validate_generator(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "command",
        "model",
        "host",
        "port",
        "timeout_seconds",
        "system_prompt",
        "fallback_interpreter",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "command" in payload:
        parsed_command = _as_argv(payload["command"], _join(path, "command"), issues, allow_empty=True)
        if parsed_command is not None:
            out["command"] = parsed_command
    for key in ("model", "host", "system_prompt"):
        if key in payload:
            parsed = _as_str(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    if "port" in payload:
        parsed_port = _as_int(payload["port"], _join(path, "port"), issues, minimum=1)
        if parsed_port is not None:
            if parsed_port > 65535:
                issues.add(_join(path, "port"), "must be <= 65535")
            else:
                out["port"] = parsed_port
    if "timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout
    if "fallback_interpreter" in payload:
        parsed_interpreter = _as_absolute_path(
            payload["fallback_interpreter"], _join(path, "fallback_interpreter"), issues
        )
        if parsed_interpreter is not None:
            out["fallback_interpreter"] = parsed_interpreter
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        level = raw_level.strip().upper() if isinstance(raw_level, str) else raw_level
        parsed_level = _as_enum(level, _join(path, "log_level"), issues, allowed_values=_LOG_LEVELS)
        if parsed_level is not None:
            out["log_level"] = parsed_level
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(
    value: object, path: str, issues: _IssueCollector, *, allow_empty: bool = False
) -> str | None:
    if allow_empty and isinstance(value, str) and not value.strip():
        return ""
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_absolute_path(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_path_text(value, path, issues)
    if parsed is None:
        return None
    if not parsed.startswith("/"):
        issues.add(path, "must be an absolute path")
        return None
    return parsed


def _as_argv(
    value: object, path: str, issues: _IssueCollector, *, allow_empty: bool
) -> list[str] | None:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    parsed: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item:
            issues.add(f"{path}[{index}]", "expected non-empty string")
            return None
        parsed.append(item)
    if not parsed and not allow_empty:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if parsed <= 0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in config files")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _NON_ALNUM.sub("_", _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip()).lower())
    return any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES)


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value)}


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "WritersConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
