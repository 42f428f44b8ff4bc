"""
Restaurant, RestaurantProfile and RestaurantMatchingAttempt models.

A Restaurant owns one profile per data source (OpenStreetMap, TripAdvisor, Google
Place). Profiles are created by discovery or by matchers and carry a version that
is bumped on every re-enrichment. Matching attempts are logged for every provider
lookup, found or not, and back the monthly quota and freshness checks.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Index, JSON
from sqlmodel import Column, Field, SQLModel

from app.core.typing import utc_now

__all__ = ["Restaurant", "RestaurantProfile", "RestaurantMatchingAttempt", "RestaurantAndProfiles"]


class Restaurant(SQLModel, table=True):
    __tablename__ = "restaurant"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    name: Optional[str] = Field(default=None, max_length=100)
    latitude: float
    longitude: float

    __table_args__ = (Index("idx_restaurant_coordinates", "latitude", "longitude"),)


class RestaurantProfile(SQLModel, table=True):
    """
    What one source knows about a restaurant.

    Attributes:
        source: Source name ("osm", "tripadvisor", "google_place")
        external_id: Identifier of the place at the source
        external_type: Kind of place at the source ("node", "way", "place", ...)
        version: Bumped on every successful re-enrichment
        updated_at: Drives the freshness window of matchers
        opening_hours: OSM opening_hours syntax, whatever the source
        tags: Filtered list of cuisine/type tags
    """

    __tablename__ = "restaurant_profile"

    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)

    source: str = Field(max_length=50)
    external_id: str = Field(max_length=255)
    external_type: str = Field(max_length=50)
    version: int = Field(default=1)

    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None
    country_code: Optional[str] = Field(default=None, max_length=20)
    state: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = None
    image_url: Optional[str] = None
    map_url: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    phone_number: Optional[str] = Field(default=None, max_length=20)
    international_phone_number: Optional[str] = Field(default=None, max_length=25)
    price_range: Optional[int] = None
    price_label: Optional[str] = None
    opening_hours: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, default=[]))
    operational: Optional[bool] = None
    website: Optional[str] = None
    source_url: Optional[str] = None

    __table_args__ = (Index("idx_restaurant_profile_identity", "source", "external_id", "external_type"),)


class RestaurantMatchingAttempt(SQLModel, table=True):
    __tablename__ = "restaurant_matching_attempt"

    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    attempted_at: datetime = Field(default_factory=utc_now)
    query_type: str
    query: Optional[str] = None
    source: str
    found: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[int] = None

    __table_args__ = (
        Index("idx_matching_attempt_source_and_restaurant", "source", "restaurant_id"),
        Index("idx_matching_attempt_source_and_attempted_at", "source", "attempted_at"),
    )


@dataclass
class RestaurantAndProfiles:
    """
    A restaurant with every profile attached to it, as carried through matching.

    Not a table: matchers return an updated copy instead of mutating it, and
    name/latitude/longitude may be completed from the profiles without being
    written back to the restaurant row.
    """

    id: int
    latitude: float
    longitude: float
    name: Optional[str] = None
    profiles: List[RestaurantProfile] = field(default_factory=list)

    @classmethod
    def of(cls, restaurant: Restaurant, profiles: List[RestaurantProfile]) -> "RestaurantAndProfiles":
        return cls(
            id=restaurant.id,
            name=restaurant.name,
            latitude=restaurant.latitude,
            longitude=restaurant.longitude,
            profiles=list(profiles),
        )

    def profile_of(self, source: str) -> Optional[RestaurantProfile]:
        return next((profile for profile in self.profiles if profile.source == source), None)
