"""
Search persistence.

Service windows are stored as the naive wall-clock time of the search location:
12:30 for lunch means 12:30 where the user is eating, whatever the server timezone.
Opening hours are evaluated against that same wall clock.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Dict, List, Optional, Protocol

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.typing import col, ensure_int
from app.models.restaurant import Restaurant, RestaurantAndProfiles, RestaurantProfile
from app.models.search import DistanceRange, Search, SearchCandidate, ServiceTimeslot

LUNCH_START = time(12, 30)
LUNCH_END = time(14, 30)
DINNER_START = time(19, 30)
DINNER_END = time(22, 0)
CUSTOM_SERVICE_DURATION = timedelta(hours=1)


def to_wall_clock(value: datetime) -> datetime:
    """Drop the offset but keep the local time as written by the caller."""
    return value.replace(tzinfo=None)


def compute_service_window(service_date: datetime, timeslot: ServiceTimeslot) -> tuple[datetime, datetime]:
    """Return (service_instant, service_end) for a date and a timeslot."""
    local = to_wall_clock(service_date)
    day = local.date()
    if timeslot == ServiceTimeslot.LUNCH:
        return datetime.combine(day, LUNCH_START), datetime.combine(day, LUNCH_END)
    if timeslot == ServiceTimeslot.DINNER:
        return datetime.combine(day, DINNER_START), datetime.combine(day, DINNER_END)
    if timeslot == ServiceTimeslot.RIGHT_NOW:
        return local, datetime.combine(day + timedelta(days=1), time.min)
    return local, local + CUSTOM_SERVICE_DURATION


@dataclass
class SearchWithLatestCandidate:
    search_id: int
    exhausted: bool
    service_timeslot: str
    service_instant: datetime
    distance_range: str
    latest_candidate_id: Optional[int] = None
    order: int = 0  # highest candidate order so far, 0 without candidates


@dataclass
class SearchWithCandidateContext:
    search: Search
    candidates: List[SearchCandidate] = field(default_factory=list)
    restaurants: Dict[int, RestaurantAndProfiles] = field(default_factory=dict)

    @property
    def profiles(self) -> List[RestaurantProfile]:
        """Profiles of every restaurant already evaluated for this search."""
        return [profile for restaurant in self.restaurants.values() for profile in restaurant.profiles]


class SearchRepository(Protocol):
    def create(
        self,
        latitude: float,
        longitude: float,
        service_date: datetime,
        service_timeslot: ServiceTimeslot,
        distance_range: DistanceRange,
        avoid_fast_food: bool = False,
        avoid_takeaway: bool = False,
    ) -> Search: ...

    def find_by_id(self, search_id: int) -> Optional[Search]: ...

    def find_with_latest_candidate_id(
        self, search_id: int, status: Optional[str] = None
    ) -> Optional[SearchWithLatestCandidate]: ...

    def find_by_id_with_candidate_context(self, search_id: int) -> Optional[SearchWithCandidateContext]: ...

    def mark_search_as_exhausted(self, search_id: int) -> None: ...


class SqlSearchRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        latitude: float,
        longitude: float,
        service_date: datetime,
        service_timeslot: ServiceTimeslot,
        distance_range: DistanceRange,
        avoid_fast_food: bool = False,
        avoid_takeaway: bool = False,
    ) -> Search:
        timeslot = ServiceTimeslot(service_timeslot)
        service_instant, service_end = compute_service_window(service_date, timeslot)
        search = Search(
            latitude=latitude,
            longitude=longitude,
            distance_range=DistanceRange(distance_range).value,
            service_date=to_wall_clock(service_date),
            service_timeslot=timeslot.value,
            service_instant=service_instant,
            service_end=service_end,
            avoid_fast_food=avoid_fast_food,
            avoid_takeaway=avoid_takeaway,
        )
        self.session.add(search)
        self.session.commit()
        self.session.refresh(search)
        return search

    def find_by_id(self, search_id: int) -> Optional[Search]:
        return self.session.get(Search, search_id)

    def find_with_latest_candidate_id(
        self, search_id: int, status: Optional[str] = None
    ) -> Optional[SearchWithLatestCandidate]:
        search = self.find_by_id(search_id)
        if search is None:
            return None

        latest_query = select(SearchCandidate).where(SearchCandidate.search_id == search_id)
        if status is not None:
            latest_query = latest_query.where(SearchCandidate.status == status)
        latest = self.session.exec(latest_query.order_by(col(SearchCandidate.id).desc()).limit(1)).first()

        max_order = self.session.exec(
            select(func.max(SearchCandidate.order)).where(SearchCandidate.search_id == search_id)
        ).one()

        return SearchWithLatestCandidate(
            search_id=ensure_int(search.id),
            exhausted=search.exhausted,
            service_timeslot=search.service_timeslot,
            service_instant=search.service_instant,
            distance_range=search.distance_range,
            latest_candidate_id=latest.id if latest else None,
            order=ensure_int(max_order),
        )

    def find_by_id_with_candidate_context(self, search_id: int) -> Optional[SearchWithCandidateContext]:
        search = self.find_by_id(search_id)
        if search is None:
            return None

        candidates = list(
            self.session.exec(
                select(SearchCandidate)
                .where(SearchCandidate.search_id == search_id)
                .order_by(col(SearchCandidate.order))
            ).all()
        )
        restaurant_ids = {c.restaurant_id for c in candidates if c.restaurant_id is not None}
        restaurants: Dict[int, RestaurantAndProfiles] = {}
        if restaurant_ids:
            rows = self.session.exec(select(Restaurant).where(col(Restaurant.id).in_(restaurant_ids))).all()
            profiles = self.session.exec(
                select(RestaurantProfile).where(col(RestaurantProfile.restaurant_id).in_(restaurant_ids))
            ).all()
            for restaurant in rows:
                restaurants[ensure_int(restaurant.id)] = RestaurantAndProfiles.of(
                    restaurant, [p for p in profiles if p.restaurant_id == restaurant.id]
                )

        return SearchWithCandidateContext(search=search, candidates=candidates, restaurants=restaurants)

    def mark_search_as_exhausted(self, search_id: int) -> None:
        search = self.find_by_id(search_id)
        if search is None or search.exhausted:
            return
        search.exhausted = True
        self.session.add(search)
        self.session.commit()
