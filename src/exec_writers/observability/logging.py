"""
exec-writers: run logging

File: src/exec_writers/observability/logging.py

Purpose
- Write one JSON object per line for every record logged during a CLI run,
  into ``<log_dir>/<run_id>/exec-writers.jsonl``.
- Route structlog events (``writer.completed``, ``generation.state``, ...)
  into the same sink, with their keyword arguments under ``fields``.

Functional requirements
- Logging never blocks a build step: records go through a bounded queue and
  are dropped (and counted) when it is full.
- Correlation fields (``run_id``, ``artifact``, ``generation_id``) are captured
  in the logging thread, not the listener thread.
- Secret-looking keys and inline credentials are redacted unless
  ``redact_secrets`` is off; generator options and environments can carry
  tokens.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, cast

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

LOG_FILENAME: Final[str] = "exec-writers.jsonl"
ROOT_LOGGER_NAME: Final[str] = "exec_writers"
REDACTED: Final[str] = "***REDACTED***"

_QUEUE_SIZE: Final[int] = 4096
_CORRELATION_KEYS: Final[frozenset[str]] = frozenset({"run_id", "artifact", "generation_id"})
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
    | {"message", "asctime", "correlation"}
)

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "exec_writers_correlation", default={}
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one run's log file."""

    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = ROOT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = _QUEUE_SIZE
    log_filename: str = LOG_FILENAME
    log_to_stdout: bool = False
    redactor: LogRedactor | None = None


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


class _SecretRedactor:
    """Replace values under secret-looking keys and credentials embedded in text."""

    key_terms: Final = (
        "secret",
        "token",
        "password",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "cookie",
        "private_key",
    )
    inline_patterns: Final = (
        (
            re.compile(r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"),
            rf"\1\2{REDACTED}",
        ),
        (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
    )

    def __call__(self, value: JSONValue) -> JSONValue:
        return self._walk(value)

    def _walk(self, value: JSONValue) -> JSONValue:
        if isinstance(value, str):
            for pattern, replacement in self.inline_patterns:
                value = pattern.sub(replacement, value)
            return value
        if isinstance(value, list):
            return [self._walk(item) for item in value]
        if isinstance(value, dict):
            return {
                key: REDACTED if self._is_secret_key(key) else self._walk(item)
                for key, item in value.items()
            }
        return value

    def _is_secret_key(self, key: str) -> bool:
        lowered = key.lower()
        return any(term in lowered for term in self.key_terms)


default_log_redactor: LogRedactor = _SecretRedactor()


def _keep_everything(value: JSONValue) -> JSONValue:
    return value


# ---------------------------------------------------------------------------
# Handlers and formatting
# ---------------------------------------------------------------------------


class _CapturingQueueHandler(logging.handlers.QueueHandler):
    """Snapshot correlation fields at log time; drop instead of blocking when full."""

    def __init__(self, log_queue: queue.Queue[object]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = dict(_correlation.get())
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class _JsonLineFormatter(logging.Formatter):
    def __init__(self, *, run_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact = redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_text(self._redact(record.getMessage())),
            "run_id": self._run_id,
        }
        correlation = getattr(record, "correlation", None) or {}
        for key in sorted(correlation):
            if correlation[key]:
                line[key] = str(correlation[key])

        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if fields:
            line["fields"] = self._redact(_jsonable(fields))
        if record.exc_info is not None:
            line["exception"] = _as_text(self._redact(self.formatException(record.exc_info)))
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """Handle on the run's queue, listener and sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        run_id: str,
        log_path: Path,
        log_queue: queue.Queue[object],
        queue_handler: _CapturingQueueHandler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_path = log_path
        self._queue = log_queue
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait for the listener to drain the queue, then flush the sinks."""

        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._queue.all_tasks_done.wait(remaining)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


# ---------------------------------------------------------------------------
# Setup / teardown
# ---------------------------------------------------------------------------


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str,
    logger_name: str = ROOT_LOGGER_NAME,
) -> StructuredLoggingHandle:
    """Start run logging from the ``[observability]`` config table."""

    cfg = dict(observability_config or {})
    level = cfg.get("log_level", "INFO")
    return setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=log_dir,
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=bool(cfg.get("log_to_stdout", False)),
            redactor=None if cfg.get("redact_secrets", True) else _keep_everything,
        )
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install the queue-backed JSON sink for one run, replacing any previous run's."""

    global _active
    shutdown_logging()

    run_id = _nonblank(config.run_id, "run_id")
    logger_name = _nonblank(config.logger_name, "logger_name")
    filename = _nonblank(config.log_filename, "log_filename")
    if Path(filename).name != filename:
        raise ValueError("log_filename must not include path separators")
    if not isinstance(config.queue_size, int) or config.queue_size <= 0:
        raise ValueError("queue_size must be a positive integer")
    level = _level_number(config.level)

    log_path = Path(config.base_log_dir) / run_id / filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _JsonLineFormatter(run_id=run_id, redactor=config.redactor or default_log_redactor)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[object] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CapturingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        log_queue=log_queue,
        queue_handler=queue_handler,
        sinks=tuple(sinks),
        listener=listener,
    )
    with _active_lock:
        _active = handle
    _hook_atexit()
    return handle


def configure_structlog() -> None:
    """Send structlog events through the stdlib logger tree.

    Keyword arguments of an event become ``extra`` attributes on the record and
    so land under ``fields`` in the JSON line.
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def flush_logging(handle: StructuredLoggingHandle | None = None) -> None:
    target = handle or get_active_logging_handle()
    if target is not None:
        target.flush()


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    global _active
    target = handle or get_active_logging_handle()
    if target is None:
        return
    target.shutdown()
    with _active_lock:
        if _active is target:
            _active = None


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for everything logged inside the block.

    A ``None`` or blank value unbinds the key for the duration of the block.
    """

    unknown = sorted(set(fields) - _CORRELATION_KEYS)
    if unknown:
        raise ValueError(f"unknown correlation key {unknown[0]!r}")
    merged = dict(_correlation.get())
    for key, value in fields.items():
        text = "" if value is None else str(value).strip()
        if text:
            merged[key] = text
        else:
            merged.pop(key, None)
    token = _correlation.set(merged)
    try:
        yield
    finally:
        _correlation.reset(token)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _hook_atexit() -> None:
    global _atexit_hooked
    if not _atexit_hooked:
        atexit.register(shutdown_logging)
        _atexit_hooked = True


def _nonblank(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def _level_number(value: int | str) -> int:
    if isinstance(value, int):
        return value
    number = logging.getLevelName(str(value).strip().upper())
    if not isinstance(number, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return number


def _utc_timestamp(epoch_seconds: float) -> str:
    stamp = datetime.fromtimestamp(epoch_seconds, tz=UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def _as_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _jsonable(value: object) -> JSONValue:
    """Coerce log field values (paths, argv tuples, captured bytes) into JSON."""

    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return [_jsonable(item) for item in items]
    return str(value)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LOG_FILENAME",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "ROOT_LOGGER_NAME",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
