"""
Test fixtures for bite-roulette tests.

Provides database session fixtures, repositories and data factories.
"""

import pytest
from datetime import datetime, timedelta
from typing import Generator, List, Optional
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  (registers every table)
from app.core.typing import utc_now
from app.models.restaurant import RestaurantAndProfiles, RestaurantProfile
from app.models.search import DistanceRange, Search, ServiceTimeslot
from app.repositories.candidate import SqlCandidateRepository
from app.repositories.matching import SqlMatchingRepository
from app.repositories.restaurant import SqlRestaurantRepository
from app.repositories.search import SqlSearchRepository
from app.services.discovery import DiscoveredRestaurantProfile


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"

# Monday 2025-06-02, 12:30 (wall clock of the search location)
MONDAY_LUNCH = datetime(2025, 6, 2, 12, 30)


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def search_repository(test_session: Session) -> SqlSearchRepository:
    return SqlSearchRepository(test_session)


@pytest.fixture
def candidate_repository(test_session: Session) -> SqlCandidateRepository:
    return SqlCandidateRepository(test_session)


@pytest.fixture
def restaurant_repository(test_session: Session) -> SqlRestaurantRepository:
    return SqlRestaurantRepository(test_session)


@pytest.fixture
def matching_repository(test_session: Session) -> SqlMatchingRepository:
    return SqlMatchingRepository(test_session)


@pytest.fixture
def sample_search(search_repository: SqlSearchRepository) -> Search:
    """A Close-range lunch search in Brussels."""
    return search_repository.create(
        latitude=50.85,
        longitude=4.35,
        service_date=MONDAY_LUNCH,
        service_timeslot=ServiceTimeslot.LUNCH,
        distance_range=DistanceRange.CLOSE,
    )


def make_discovered(
    external_id: str = "1",
    name: Optional[str] = "Chez Léon",
    latitude: float = 50.8477,
    longitude: float = 4.3541,
    source: str = "osm",
    external_type: str = "node",
    **fields,
) -> DiscoveredRestaurantProfile:
    """Create a discovered OSM profile; extra keyword arguments set profile fields."""
    values = dict(
        opening_hours="Mo-Su 11:00-23:00",
        image_url=f"https://img.example/{external_id}.jpg",
        tags=["belgian"],
        operational=True,
    )
    values.update(fields)
    return DiscoveredRestaurantProfile(
        source=source,
        external_id=external_id,
        external_type=external_type,
        latitude=latitude,
        longitude=longitude,
        name=name,
        **values,
    )


def make_profile(
    source: str,
    restaurant_id: int = 1,
    external_id: str = "ext-1",
    external_type: str = "node",
    updated_at: Optional[datetime] = None,
    **fields,
) -> RestaurantProfile:
    """Create a detached profile for pure-function tests."""
    profile_id = fields.pop("id", None)
    values = dict(latitude=50.85, longitude=4.35)
    values.update(fields)
    return RestaurantProfile(
        id=profile_id,
        restaurant_id=restaurant_id,
        source=source,
        external_id=external_id,
        external_type=external_type,
        updated_at=updated_at or utc_now(),
        **values,
    )


def make_restaurant(
    profiles: Optional[List[RestaurantProfile]] = None,
    name: Optional[str] = "Chez Léon",
    latitude: float = 50.85,
    longitude: float = 4.35,
    restaurant_id: int = 1,
) -> RestaurantAndProfiles:
    return RestaurantAndProfiles(
        id=restaurant_id,
        name=name,
        latitude=latitude,
        longitude=longitude,
        profiles=list(profiles or []),
    )


def days_ago(days: int) -> datetime:
    return utc_now() - timedelta(days=days)
