"""
Type and time helpers shared by models and repositories.

SQLModel fields are declared with Python types (e.g., `order: int`) but at the
class level they're InstrumentedAttribute descriptors with SQLAlchemy column
methods like .desc() and .in_(). `col()` tells the type checker so.

SQLite hands datetimes back without tzinfo even when they were written as UTC,
so anything compared against `utc_now()` goes through `ensure_utc()` first.
"""

from typing import TYPE_CHECKING, Optional, TypeVar
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    Usage:
        select(SearchCandidate).order_by(col(SearchCandidate.order).desc())
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Current UTC time (timezone-aware). Use as default_factory in SQLModel fields.

    Usage:
        created_at: datetime = Field(default_factory=utc_now)
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def ensure_int(value: Optional[int], default: int = 0) -> int:
    """
    Convert Optional[int] to int.

    SQLModel primary keys are Optional[int] because they're auto-generated,
    but once a row is persisted we know they exist.
    """
    return value if value is not None else default


__all__ = ["col", "utc_now", "ensure_utc", "ensure_int"]
