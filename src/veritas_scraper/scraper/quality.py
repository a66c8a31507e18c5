"""Extraction quality score and processing status."""

from __future__ import annotations

import enum

from veritas_scraper.scraper.config import (
    QUALITY_FULL_LENGTH_CHARS,
    QUALITY_FULL_PARAGRAPHS,
)

_LENGTH_POINTS = 40
_PARAGRAPH_POINTS = 30
_FIELD_POINTS = 10


class ProcessingStatus(str, enum.Enum):
    """Processing status of a stored article."""

    PENDING = "pending"
    COMPLETED = "completed"
    COMPLETED_LOW_QUALITY = "completed-low-quality"
    FAILED = "failed"


#: Statuses that count towards a job's scraped-articles counter.
SCRAPED_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {ProcessingStatus.COMPLETED, ProcessingStatus.COMPLETED_LOW_QUALITY}
)


def quality_score(
    body: str,
    paragraph_count: int,
    *,
    has_title: bool,
    has_date: bool,
    has_author: bool,
) -> int:
    """Score an extraction from 0 to 100.

    Body length contributes up to 40 points and paragraph count up to 30;
    title, date and author add 10 each.  An empty body always scores 0.
    """
    if not body:
        return 0
    length_part = min(len(body) / QUALITY_FULL_LENGTH_CHARS, 1.0) * _LENGTH_POINTS
    para_part = min(paragraph_count / QUALITY_FULL_PARAGRAPHS, 1.0) * _PARAGRAPH_POINTS
    fields_part = _FIELD_POINTS * sum((has_title, has_date, has_author))
    return int(round(length_part + para_part + fields_part))


def processing_status(body: str, score: int, threshold: int) -> ProcessingStatus:
    """Map an extraction to its processing status.

    ``failed`` for an empty body, ``completed`` at or above *threshold*,
    ``completed-low-quality`` otherwise.
    """
    if not body:
        return ProcessingStatus.FAILED
    if score >= threshold:
        return ProcessingStatus.COMPLETED
    return ProcessingStatus.COMPLETED_LOW_QUALITY
