"""
Matching attempt log.

Attempts back two checks: the monthly quota of a paid provider and the
"already tried recently" guard. Both are read-then-act without locking, so
concurrent searches can overshoot a quota by a few calls.
"""

from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.typing import utc_now
from app.models.restaurant import RestaurantMatchingAttempt


def month_bounds(month: datetime) -> tuple[datetime, datetime]:
    """[first instant of the month, first instant of the next month) in UTC."""
    if month.tzinfo is not None:
        month = month.astimezone(timezone.utc)
    start = datetime(month.year, month.month, 1, tzinfo=timezone.utc)
    if month.month == 12:
        end = datetime(month.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(month.year, month.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class MatchingRepository(Protocol):
    def does_attempt_exist_since(self, instant: datetime, restaurant_id: int, source: str) -> bool: ...

    def has_reached_quota(self, source: str, max_number_of_attempts: int) -> bool: ...

    def count_matching_attempts_during_month(self, source: str, month: datetime) -> int: ...

    def register_attempt_to_find_a_match(
        self,
        query: Optional[str],
        query_type: str,
        source: str,
        restaurant_id: int,
        found: bool,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius: Optional[int] = None,
    ) -> RestaurantMatchingAttempt: ...


class SqlMatchingRepository:
    def __init__(self, session: Session):
        self.session = session

    def does_attempt_exist_since(self, instant: datetime, restaurant_id: int, source: str) -> bool:
        attempt = self.session.exec(
            select(RestaurantMatchingAttempt.id).where(
                RestaurantMatchingAttempt.restaurant_id == restaurant_id,
                RestaurantMatchingAttempt.source == source,
                RestaurantMatchingAttempt.attempted_at >= instant,
            )
        ).first()
        return attempt is not None

    def count_matching_attempts_during_month(self, source: str, month: datetime) -> int:
        start, end = month_bounds(month)
        count = self.session.exec(
            select(func.count(RestaurantMatchingAttempt.id)).where(
                RestaurantMatchingAttempt.source == source,
                RestaurantMatchingAttempt.attempted_at >= start,
                RestaurantMatchingAttempt.attempted_at < end,
            )
        ).one()
        return int(count or 0)

    def has_reached_quota(self, source: str, max_number_of_attempts: int) -> bool:
        return self.count_matching_attempts_during_month(source, utc_now()) > max_number_of_attempts

    def register_attempt_to_find_a_match(
        self,
        query: Optional[str],
        query_type: str,
        source: str,
        restaurant_id: int,
        found: bool,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius: Optional[int] = None,
    ) -> RestaurantMatchingAttempt:
        attempt = RestaurantMatchingAttempt(
            query=query,
            query_type=query_type,
            source=source,
            restaurant_id=restaurant_id,
            found=found,
            latitude=latitude,
            longitude=longitude,
            radius=radius,
        )
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt
