"""
Module: stock_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, UTC-normalized timestamps, the type
    annotation map for consistent column types, and the TimestampMixin.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - UUID primary keys: Every model inherits a uuid4-generated primary key.
    - Timestamps are always timezone-aware UTC on the Python side, whatever
      the backend stores (SQLite drops tzinfo; PostgreSQL keeps it).
    - Quantities and pence amounts are integers; there is no float money.

Failure modes:
    - IntegrityError if a model attempts to INSERT a duplicate UUID.

Audit relevance:
    created_at/updated_at on TimestampMixin are the basic row metadata used by
    FIFO tie-breaking (lots) and analytics (transfers).
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUIDs stored as their 36-character text form, so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    # SQLite hands back naive datetimes; they were written as UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime that always round-trips as UTC.

    Contract:
        Values are normalized to UTC on the way in and tagged UTC on the way
        out, so comparisons with ``Clock.now()`` never mix naive and aware
        datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


def utcnow() -> datetime:
    """Column default for row timestamps."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to UTCDateTime -- always timezone-aware.
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TimestampMixin:
    """
    Row creation and modification timestamps.

    Guarantees:
        - created_at is set on INSERT and never changes.
        - updated_at is set on INSERT and refreshed on every UPDATE.
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# Re-export UUID for convenience
UUID = PyUUID


def enum_column(enum_cls, length: int = 32) -> SAEnum:
    """
    Column type for ``str`` enums stored as their value in a VARCHAR.

    Loaded rows come back as enum members, not bare strings.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
