"""
exec-writers: unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction, correlation metadata, and queue-backed reliability.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation (run, artifact, generation).
- structlog events reaching the JSON sink with their keyword fields.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from exec_writers.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _logger_name() -> str:
    return f"exec_writers.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-logging-redaction",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(artifact="hello", generation_id="gen-1"):
        logger.info(
            "payload token=tok-FAKE and api_key=sk-FAKE123456789012345",
            extra={"nested": {"password": "hunter2", "safe": "ok"}},
        )

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "run-logging-redaction" / "exec-writers.jsonl"
    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    first = parsed[0]
    assert first["run_id"] == "run-logging-redaction"
    assert first["artifact"] == "hello"
    assert first["generation_id"] == "gen-1"
    assert first["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    line = handle.log_path.read_text(encoding="utf-8")
    assert "tok-FAKE" not in line
    assert "sk-FAKE" not in line
    assert "hunter2" not in line


def test_structlog_events_land_in_the_json_sink(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        {"log_level": "DEBUG", "redact_secrets": True},
        run_id="run-structlog",
        log_dir=tmp_path,
        logger_name=logger_name,
    )
    log = structlog.get_logger(logger_name)

    with correlation_scope(artifact="tool"):
        log.info("writer.completed", sha256="ab" * 32, path="/out/tool")
        log.debug("check.accepted", command=["sh", "-n"])

    shutdown_logging(handle)

    parsed = _read_json_lines(handle.log_path)
    assert [entry["message"] for entry in parsed] == ["writer.completed", "check.accepted"]
    assert parsed[0]["artifact"] == "tool"
    assert parsed[0]["fields"] == {"sha256": "ab" * 32, "path": "/out/tool"}
    assert parsed[1]["level"] == "DEBUG"


def test_log_level_filters_records(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        {"log_level": "WARNING"}, run_id="run-level", log_dir=tmp_path, logger_name=logger_name
    )
    log = structlog.get_logger(logger_name)

    log.info("relocate.placed")
    log.warning("compile.debug_sections_survived_strip", sections=[".debug_info"])
    shutdown_logging(handle)

    parsed = _read_json_lines(handle.log_path)
    assert [entry["message"] for entry in parsed] == ["compile.debug_sections_survived_strip"]


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        {"redact_secrets": False}, run_id="run-plain", log_dir=tmp_path, logger_name=logger_name
    )

    logging.getLogger(logger_name).info("token=visible")
    shutdown_logging(handle)

    assert "token=visible" in handle.log_path.read_text(encoding="utf-8")


def test_correlation_scope_nests_and_restores() -> None:
    with correlation_scope(run_id="r1", artifact="a"):
        with correlation_scope(artifact=None, generation_id="g"):
            assert get_correlation_context() == {"run_id": "r1", "generation_id": "g"}
        assert get_correlation_context() == {"run_id": "r1", "artifact": "a"}
    assert get_correlation_context() == {}


def test_correlation_scope_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="unknown correlation key"), correlation_scope(user="x"):
        pass


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-threaded",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=4096,
        )
    )
    logger = logging.getLogger(logger_name)

    total_threads = 8
    per_thread = 40

    def worker(thread_idx: int) -> None:
        with correlation_scope(artifact=f"artifact-{thread_idx}"):
            for i in range(per_thread):
                logger.info(
                    f"thread={thread_idx} index={i} token=tok-secret-{thread_idx}-{i}",
                    extra={"api_key": f"sk-FAKE-{thread_idx}-{i}", "thread_idx": thread_idx},
                )

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        parsed = json.loads(line)
        assert parsed["artifact"] == f"artifact-{parsed['fields']['thread_idx']}"
        assert "tok-secret" not in line
        assert "sk-FAKE" not in line


def test_queue_handler_non_blocking_and_shutdown_flushes(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-flush",
            base_log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stdout=False,
            queue_size=10_000,
        )
    )
    logger = logging.getLogger(logger_name)

    queue_handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.QueueHandler)]
    assert queue_handlers, "expected queue-backed non-blocking logging"

    expected = 300
    for i in range(expected):
        logger.info("message %s", i)

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert handle.dropped_records == 0
    assert len(lines) == expected


def test_setup_rejects_bad_arguments(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="run_id"):
        setup_structured_logging(LoggingConfig(run_id="  ", base_log_dir=tmp_path))
    with pytest.raises(ValueError, match="log_filename"):
        setup_structured_logging(
            LoggingConfig(run_id="r", base_log_dir=tmp_path, log_filename="sub/x.jsonl")
        )
