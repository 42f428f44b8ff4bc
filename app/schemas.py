from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from app.models.search import DistanceRange, ServiceTimeslot


class SearchCreate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    service_date: Optional[datetime] = None  # local wall-clock time of the search, defaults to now
    service_timeslot: ServiceTimeslot = ServiceTimeslot.RIGHT_NOW
    distance_range: DistanceRange = DistanceRange.CLOSE
    avoid_fast_food: bool = False
    avoid_takeaway: bool = False


class SearchOut(BaseModel):
    id: int
    latitude: float
    longitude: float
    distance_range: str
    service_date: datetime
    service_timeslot: str
    service_instant: datetime
    service_end: datetime
    avoid_fast_food: bool
    avoid_takeaway: bool
    exhausted: bool
    created_at: datetime


class CandidateOut(BaseModel):
    id: int
    search_id: int
    order: int
    status: str
    rejection_reason: Optional[str] = None
    recovered_from_candidate_id: Optional[int] = None
    created_at: datetime
    restaurant: Optional[Dict[str, Any]] = None  # reconciled view, see app.services.view


class LocationOut(BaseModel):
    display: str
    compact: str
    latitude: float
    longitude: float


class AddressSearchOut(BaseModel):
    locations: List[LocationOut] = []
    note: Optional[str] = None
    error: Optional[str] = None
