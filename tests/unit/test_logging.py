"""Unit tests for the structured logging configuration.

Verifies that ``configure_logging()`` produces well-formed JSON, that the
``request_id_var`` context variable and structlog context variables reach
the records, and that secret-bearing keys are redacted.
"""

from __future__ import annotations

import json
import logging
from io import StringIO
from typing import Callable

import structlog

from veritas_scraper.core.logging_config import configure_logging, request_id_var


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _capture(log_level: str, emit: Callable[[], None]) -> list[dict]:
    """Configure logging, run *emit* and return the JSON records written.

    The root handler's stream is swapped for a ``StringIO`` for the duration
    of the call.
    """
    configure_logging(log_level)

    buffer = StringIO()
    root = logging.getLogger()
    original_streams = []
    for handler in root.handlers:
        if hasattr(handler, "stream"):
            original_streams.append((handler, handler.stream))
            handler.stream = buffer

    try:
        emit()
    finally:
        for handler, stream in original_streams:
            handler.flush()
            handler.stream = stream

    lines = [line for line in buffer.getvalue().splitlines() if line.strip()]
    return [json.loads(line) for line in lines]


def _find(records: list[dict], event: str) -> dict:
    target = next((r for r in records if r.get("event") == event), None)
    assert target is not None, f"No record with event={event!r} in {records!r}"
    return target


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestConfigureLoggingJson:
    """INFO-level (production) JSON output."""

    def test_stdlib_records_are_json(self) -> None:
        records = _capture(
            "INFO", lambda: logging.getLogger("test.stdlib").info("stdlib_message")
        )
        target = _find(records, "stdlib_message")
        assert target["level"] == "info"
        assert target["logger"] == "test.stdlib"
        assert "timestamp" in target

    def test_structlog_records_are_json(self) -> None:
        records = _capture(
            "INFO",
            lambda: structlog.get_logger("test.structlog").info(
                "article_stored", url="https://news.example.com/a", quality_score=80
            ),
        )
        target = _find(records, "article_stored")
        assert target["quality_score"] == 80
        assert target["url"] == "https://news.example.com/a"

    def test_level_filtering(self) -> None:
        records = _capture(
            "WARNING", lambda: logging.getLogger("test.level").info("filtered_out")
        )
        assert all(r.get("event") != "filtered_out" for r in records)


class TestContextPropagation:
    def test_request_id_appears_in_output(self) -> None:
        token = request_id_var.set("req-1234")
        try:
            records = _capture(
                "INFO", lambda: logging.getLogger("test.rid").info("rid_message")
            )
        finally:
            request_id_var.reset(token)

        assert _find(records, "rid_message")["request_id"] == "req-1234"

    def test_no_request_id_when_unset(self) -> None:
        request_id_var.set(None)
        records = _capture(
            "INFO", lambda: logging.getLogger("test.rid").info("no_rid_message")
        )
        assert _find(records, "no_rid_message").get("request_id") is None

    def test_bound_job_id_reaches_records(self) -> None:
        def _emit() -> None:
            with structlog.contextvars.bound_contextvars(job_id="job-42"):
                structlog.get_logger("test.job").info("scraping_job_started")

        records = _capture("INFO", _emit)
        assert _find(records, "scraping_job_started")["job_id"] == "job-42"


class TestRedaction:
    def test_secret_keys_are_redacted(self) -> None:
        records = _capture(
            "INFO",
            lambda: structlog.get_logger("test.redact").info(
                "broker_connect",
                broker_password="hunter2",
                headers={"Authorization": "Bearer abc", "Accept": "text/html"},
            ),
        )
        target = _find(records, "broker_connect")
        assert target["broker_password"] == "[REDACTED]"
        assert target["headers"]["Authorization"] == "[REDACTED]"
        assert target["headers"]["Accept"] == "text/html"


class TestConfigureLoggingIdempotent:
    def test_calling_twice_does_not_duplicate_handlers(self) -> None:
        configure_logging("INFO")
        configure_logging("INFO")
        assert len(logging.getLogger().handlers) == 1
