"""Structured JSON logging configuration using structlog.

Call ``configure_logging()`` once at process startup (the FastAPI app
factory and the Celery worker both do).  Modules can then use either the
stdlib logging API or structlog directly::

    import logging
    logger = logging.getLogger(__name__)
    logger.info("scraper: fetched %s", url)

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("job_started", job_id=job_id, sources=3)

A ``request_id`` context variable is populated by the request-logging
middleware in ``api/main.py``; the orchestrator binds ``job_id`` through
``structlog.contextvars`` for the lifetime of a job run.
"""

from __future__ import annotations

import logging
import logging.config
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Per-request ID propagated from the HTTP middleware to log processors."""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "password",
    "secret",
    "token",
    "authorization",
    "cookie",
})
"""Lower-cased substrings that identify log keys whose values are redacted."""


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with a redaction marker.

    Scans top-level keys and one level of nested dicts (e.g. ``headers={...}``).
    """
    redacted = "[REDACTED]"
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in _SECRET_SUBSTRINGS):
            event_dict[key] = redacted
            continue
        val = event_dict[key]
        if isinstance(val, dict):
            for nested_key in list(val.keys()):
                if any(secret in str(nested_key).lower() for secret in _SECRET_SUBSTRINGS):
                    val[nested_key] = redacted
    return event_dict


def _inject_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Inject the current request ID into the event dict if one is set."""
    rid = request_id_var.get()
    if rid is not None and "request_id" not in event_dict:
        event_dict["request_id"] = rid
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog with JSON output for production.

    In production (log_level != ``"DEBUG"``) every record is rendered as one
    JSON line.  With ``"DEBUG"`` structlog's coloured ``ConsoleRenderer`` is
    used instead.

    Standard fields on every record: ``timestamp``, ``level``, ``logger``,
    ``event`` and, when bound, ``request_id`` / ``job_id``.

    Idempotent: existing root handlers are replaced on every call.

    Args:
        log_level: Logging verbosity string, case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_request_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_development:
        final_renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(
            colors=True,
        )
    else:
        final_renderer = structlog.processors.JSONRenderer()

    # Route ``logging.getLogger(__name__)`` records through the same chain.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for noisy_logger in ("uvicorn.access", "httpx", "httpcore", "celery.app.trace"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
