"""Database layer - engine, base classes and portable column types."""

from expense_kernel.db.base import (
    RATE_TYPE,
    UUID,
    Base,
    TimestampedBase,
    UTCDateTime,
    UUIDString,
)
from expense_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "RATE_TYPE",
    "Base",
    "TimestampedBase",
    "UTCDateTime",
    "UUID",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
