"""
Module: expense_kernel.db.base
Responsibility: Declarative base and portable column types for all ORM models.
Architecture position: Kernel > DB.  The lowest-level import target within the
    kernel; MUST NOT import from models/, services/, or outer layers.

Invariants enforced:
    - UUID primary keys stored as String(36) so the same schema runs on
      PostgreSQL and SQLite.
    - Decimal maps to Numeric(38, 9); never float for money.  Exchange
      rates use RATE_TYPE, Numeric(38, 18) on PostgreSQL.
    - Timestamps are always returned timezone-aware (UTC), including from
      backends that drop tzinfo on storage.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Numeric
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import String, TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(str(value))
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp.

    SQLite stores datetimes without an offset; values read back are
    re-tagged as UTC so domain objects always carry tzinfo.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - Decimal maps to Numeric(38, 9).
        - datetime maps to UTCDateTime.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9, asdecimal=True),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TimestampedBase(Base):
    """
    Abstract base with creation/modification timestamps.

    Timestamps are set by the repositories from an injected Clock rather
    than by the database server, so ordering by ``created_at`` is exact
    and reproducible in tests.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


# SQLite keeps Numeric as REAL and reads it back formatted to the column
# scale, so 18 places would surface float noise there.
RATE_TYPE = Numeric(38, 18, asdecimal=True).with_variant(
    Numeric(38, 9, asdecimal=True), "sqlite",
)

UUID = PyUUID
