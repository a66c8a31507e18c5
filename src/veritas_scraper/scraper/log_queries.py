"""Diagnostics computed over a job's persisted log entries.

The status surface only exposes a job's status and counters; the detail
(which rule matched, HTTP timing, raw errors) lives in ``scraping_logs``.
Each function here takes the job's log rows in timestamp order and returns
a JSON-ready summary.  Aggregation happens in Python so the same queries run
on PostgreSQL and on the SQLite test database.
"""

from __future__ import annotations

import uuid
from collections import Counter, defaultdict
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from veritas_scraper.core.models import ScrapingJob, ScrapingLog
from veritas_scraper.scraper.repository import FETCH_ATTEMPT_EVENT, ScrapingRepository

#: Upper bounds of the quality score buckets reported by ``extraction_quality``.
QUALITY_BUCKETS: tuple[tuple[str, int, int], ...] = (
    ("0-24", 0, 24),
    ("25-49", 25, 49),
    ("50-74", 50, 74),
    ("75-100", 75, 100),
)


def _data(entry: ScrapingLog) -> dict[str, Any]:
    return entry.additional_data or {}


def _percentile(values: Sequence[float], q: float) -> float | None:
    """Continuous percentile with linear interpolation between ranks."""
    if not values:
        return None
    ordered = sorted(values)
    pos = (len(ordered) - 1) * q
    lower = int(pos)
    upper = min(lower + 1, len(ordered) - 1)
    fraction = pos - lower
    return round(ordered[lower] + (ordered[upper] - ordered[lower]) * fraction, 1)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _fetch_attempts(logs: Sequence[ScrapingLog]) -> list[ScrapingLog]:
    return [e for e in logs if e.event_name == FETCH_ATTEMPT_EVENT]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def http_errors(logs: Sequence[ScrapingLog]) -> list[dict[str, Any]]:
    """Failed article fetches with status, error type and timing."""
    errors = []
    for entry in _fetch_attempts(logs):
        data = _data(entry)
        if data.get("success"):
            continue
        http = data.get("http") or {}
        error = data.get("error") or {}
        errors.append(
            {
                "timestamp": _iso(entry.timestamp),
                "source_id": str(entry.source_id) if entry.source_id else None,
                "url": http.get("url"),
                "status": http.get("status"),
                "response_ms": http.get("response_ms"),
                "error_type": error.get("type"),
                "message": error.get("message"),
            }
        )
    return errors


def extraction_quality(logs: Sequence[ScrapingLog]) -> dict[str, Any]:
    """Quality score distribution, processing statuses and body strategies."""
    scores: list[int] = []
    statuses: Counter = Counter()
    strategies: Counter = Counter()
    dropped: Counter = Counter()
    for entry in logs:
        if entry.event_name != "extraction_traces":
            continue
        extraction = _data(entry).get("extraction") or {}
        score = extraction.get("quality_score")
        if isinstance(score, (int, float)):
            scores.append(int(score))
        statuses[extraction.get("processing_status") or "unknown"] += 1
        strategies[extraction.get("body_strategy") or "none"] += 1
        dropped.update(extraction.get("dropped_paragraphs") or {})

    buckets = {label: 0 for label, _, _ in QUALITY_BUCKETS}
    for score in scores:
        for label, low, high in QUALITY_BUCKETS:
            if low <= score <= high:
                buckets[label] += 1
                break

    return {
        "extractions": len(scores),
        "avg_quality_score": round(sum(scores) / len(scores), 1) if scores else None,
        "min_quality_score": min(scores) if scores else None,
        "max_quality_score": max(scores) if scores else None,
        "score_buckets": buckets,
        "processing_status": dict(statuses),
        "body_strategy": dict(strategies),
        "dropped_paragraphs": dict(dropped),
    }


def response_time_stats(logs: Sequence[ScrapingLog]) -> dict[str, Any]:
    """Response time percentiles over every timed fetch attempt."""
    times: list[float] = []
    for entry in _fetch_attempts(logs):
        value = (_data(entry).get("http") or {}).get("response_ms")
        if isinstance(value, (int, float)):
            times.append(float(value))
    return {
        "count": len(times),
        "min_ms": min(times) if times else None,
        "max_ms": max(times) if times else None,
        "avg_ms": round(sum(times) / len(times), 1) if times else None,
        "p50_ms": _percentile(times, 0.50),
        "p90_ms": _percentile(times, 0.90),
        "p95_ms": _percentile(times, 0.95),
        "p99_ms": _percentile(times, 0.99),
    }


def job_timeline(job: ScrapingJob, logs: Sequence[ScrapingLog]) -> dict[str, Any]:
    """Lifecycle transitions and per-source activity windows."""
    transitions = [
        {
            "timestamp": _iso(e.timestamp),
            "event": e.event_name,
            "message": e.message,
            "transition": _data(e).get("transition"),
        }
        for e in logs
        if e.event_type == "lifecycle"
    ]

    windows: dict[str, dict[str, Any]] = {}
    for entry in logs:
        if entry.source_id is None:
            continue
        key = str(entry.source_id)
        window = windows.setdefault(
            key, {"source_id": key, "first_event": entry.timestamp, "events": 0}
        )
        window["last_event"] = entry.timestamp
        window["events"] += 1
    sources = []
    for window in windows.values():
        first, last = window["first_event"], window["last_event"]
        sources.append(
            {
                "source_id": window["source_id"],
                "first_event": _iso(first),
                "last_event": _iso(last),
                "duration_seconds": round((last - first).total_seconds(), 3),
                "events": window["events"],
            }
        )

    duration = None
    if job.started_at is not None and job.completed_at is not None:
        duration = round((job.completed_at - job.started_at).total_seconds(), 3)

    return {
        "status": job.status,
        "triggered_at": _iso(job.triggered_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "duration_seconds": duration,
        "transitions": transitions,
        "sources": sources,
    }


def error_summary(logs: Sequence[ScrapingLog]) -> dict[str, int]:
    """Count of error-counting entries grouped by error type."""
    summary: Counter = Counter()
    for entry in logs:
        if not entry.counts_as_error:
            continue
        error = _data(entry).get("error") or {}
        summary[error.get("type") or entry.event_name] += 1
    return dict(summary)


def source_performance(logs: Sequence[ScrapingLog]) -> list[dict[str, Any]]:
    """Per-source fetch success, timing, storage and error counts."""
    stats: dict[uuid.UUID, dict[str, Any]] = defaultdict(
        lambda: {
            "attempts": 0,
            "successes": 0,
            "failures": 0,
            "response_times": [],
            "articles_stored": 0,
            "duplicates": 0,
            "errors": 0,
        }
    )
    for entry in logs:
        if entry.source_id is None:
            continue
        row = stats[entry.source_id]
        data = _data(entry)
        if entry.event_name == FETCH_ATTEMPT_EVENT:
            row["attempts"] += 1
            if data.get("success"):
                row["successes"] += 1
            else:
                row["failures"] += 1
            response_ms = (data.get("http") or {}).get("response_ms")
            if isinstance(response_ms, (int, float)):
                row["response_times"].append(float(response_ms))
        elif entry.event_name == "article_stored":
            row["articles_stored"] += 1
        elif entry.event_name == "duplicate_skipped":
            row["duplicates"] += 1
        if entry.counts_as_error:
            row["errors"] += 1

    result = []
    for source_id, row in stats.items():
        times = row.pop("response_times")
        attempts = row["attempts"]
        result.append(
            {
                "source_id": str(source_id),
                **row,
                "success_rate": round(row["successes"] / attempts, 4) if attempts else None,
                "avg_response_ms": round(sum(times) / len(times), 1) if times else None,
            }
        )
    return sorted(result, key=lambda r: r["source_id"])


async def job_diagnostics(repository: ScrapingRepository, job_id: uuid.UUID) -> dict[str, Any]:
    """Run every query for one job.

    Raises:
        JobNotFoundError: If no job has this ID.
    """
    job = await repository.get_job(job_id)
    logs = await repository.list_logs(job_id)
    return {
        "job_id": job.id,
        "timeline": job_timeline(job, logs),
        "http_errors": http_errors(logs),
        "error_summary": error_summary(logs),
        "extraction_quality": extraction_quality(logs),
        "response_times": response_time_stats(logs),
        "source_performance": source_performance(logs),
    }
