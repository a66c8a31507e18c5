"""SQLAlchemy declarative base and shared column helpers for all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- JSONType: JSON column type that becomes JSONB on PostgreSQL
- utcnow(): timezone-aware default for timestamp columns

Column types are kept portable (``sa.Uuid``, ``sa.JSON``) so the same
metadata can be created on SQLite for the test suite; PostgreSQL gets the
native UUID and JSONB types through the dialect variants.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all Veritas scraper models."""

    type_annotation_map = {
        uuid.UUID: sa.Uuid(as_uuid=True),
        datetime: sa.DateTime(timezone=True),
    }
