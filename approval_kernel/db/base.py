"""
Module: approval_kernel.db.base
Responsibility: Declarative base class and portable column types for all
    SQLAlchemy ORM models.  Provides the UUID primary key convention and the
    type annotation map that keeps column types consistent across PostgreSQL
    and SQLite.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  MUST NOT import from models/,
    services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Timezone-aware timestamps: UTCDateTime always hands back aware UTC
      datetimes, even on SQLite which stores naive text.

Failure modes:
    - ValueError from UTCDateTime.process_bind_param if a naive datetime is
      bound (all kernel timestamps come from an injected Clock and are aware).
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUIDs as 36-char text, so ids look the same on SQLite and PostgreSQL."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    Contract:
        Accepts only timezone-aware datetimes.  PostgreSQL stores them as
        ``timestamptz``; SQLite has no timezone support, so values are
        normalized to naive UTC on the way in and re-tagged as UTC on the
        way out.

    Guarantees:
        Every loaded value is an aware datetime in UTC, so timeout
        arithmetic against ``Clock.now()`` never mixes naive and aware.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Every workflow table gets a uuid4 ``id``; ``datetime`` columns are UTCDateTime."""

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )

