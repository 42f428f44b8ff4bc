"""
Search and SearchCandidate models.

A Search is the aggregate root of one "pick a restaurant for me" request: where,
when, how far and with which preferences. Every restaurant the engine evaluates
for it is appended as a SearchCandidate (Returned or Rejected), ordered by a
per-search counter. Candidates are never updated after creation.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from app.core.typing import utc_now

__all__ = [
    "DistanceRange",
    "ServiceTimeslot",
    "CandidateStatus",
    "RejectionReason",
    "Search",
    "SearchCandidate",
]


class DistanceRange(str, Enum):
    CLOSE = "Close"
    MID_RANGE = "MidRange"
    FAR = "Far"


class ServiceTimeslot(str, Enum):
    DINNER = "Dinner"
    LUNCH = "Lunch"
    RIGHT_NOW = "RightNow"
    CUSTOM = "Custom"


class CandidateStatus(str, Enum):
    RETURNED = "Returned"
    REJECTED = "Rejected"


class RejectionReason(str, Enum):
    MISSING_COORDINATES = "missing_coordinates"
    BLOCKLISTED_NAME = "blocklisted_name"
    UNKNOWN_OPENING_HOURS = "unknown_opening_hours"
    CLOSED = "closed"
    NO_IMAGE = "no_image"
    FAST_FOOD = "fast_food"
    TAKEAWAY = "takeaway"
    NO_RESTAURANT_FOUND = "no_restaurant_found"


class Search(SQLModel, table=True):
    __tablename__ = "search"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)

    latitude: float
    longitude: float
    distance_range: str = Field(default=DistanceRange.CLOSE.value, max_length=8)

    # Service window
    service_date: datetime
    service_timeslot: str = Field(default=ServiceTimeslot.RIGHT_NOW.value, max_length=8)
    service_instant: datetime
    service_end: datetime

    # Preferences
    avoid_fast_food: bool = Field(default=False)
    avoid_takeaway: bool = Field(default=False)

    exhausted: bool = Field(default=False)  # sticky, never reset

    __table_args__ = (Index("idx_search_coordinates", "latitude", "longitude"),)


class SearchCandidate(SQLModel, table=True):
    __tablename__ = "search_candidate"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    search_id: int = Field(foreign_key="search.id", index=True)
    restaurant_id: Optional[int] = Field(default=None, foreign_key="restaurant.id", index=True)
    recovered_from_candidate_id: Optional[int] = Field(default=None, foreign_key="search_candidate.id", index=True)
    order: int
    status: str = Field(max_length=8)  # Returned, Rejected
    rejection_reason: Optional[str] = Field(default=None, max_length=40)

    @property
    def is_returned(self) -> bool:
        return self.status == CandidateStatus.RETURNED.value
