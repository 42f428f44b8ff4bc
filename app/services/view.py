"""
Presentation model of a restaurant, reconciled from its profiles.

Each attribute is taken from the first profile that has it, with a per-field source
priority: Google is trusted for contact data and pictures, TripAdvisor for
descriptions, cuisine tags and opening hours, OpenStreetMap comes last.
The validator judges candidates on this view, and the API returns it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence
from urllib.parse import quote

from app.models.restaurant import RestaurantAndProfiles, RestaurantProfile
from app.scraper.google import GOOGLE_PLACE_SOURCE_NAME
from app.scraper.overpass import OVERPASS_SOURCE_NAME
from app.scraper.tripadvisor import TRIPADVISOR_SOURCE_NAME
from app.services.opening_hours import OpeningHoursOfTheDay, opening_hours_of_the_day

GOOGLE_MAP_BASE_URL = "https://www.google.com/maps/search/?api=1"


@dataclass
class RestaurantView:
    id: int
    name: str
    source: str
    latitude: Optional[float]
    longitude: Optional[float]
    description: Optional[str] = None
    price_label: Optional[str] = None
    image_url: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    phone_number: Optional[str] = None
    international_phone_number: Optional[str] = None
    address: Optional[str] = None
    opening_hours: Optional[OpeningHoursOfTheDay] = None
    urls: List[str] = field(default_factory=list)
    map_url: Optional[str] = None


def _first(profiles: Sequence[Optional[RestaurantProfile]], attribute: str):
    for profile in profiles:
        if profile is not None:
            value = getattr(profile, attribute)
            if value:
                return value
    return None


def compute_rating(profiles: Sequence[Optional[RestaurantProfile]]) -> tuple[Optional[float], Optional[int]]:
    """Average of the ratings weighted by their number of votes, else the first rating."""
    rated = [p for p in profiles if p is not None and p.rating is not None]
    if not rated:
        return None, None

    total_count = sum(p.rating_count or 0 for p in rated)
    if total_count > 0:
        weighted = sum(p.rating * (p.rating_count or 0) for p in rated)
        return weighted / total_count, total_count
    return rated[0].rating, rated[0].rating_count


def build_map_url(restaurant: RestaurantAndProfiles) -> str:
    if restaurant.name:
        return f"{GOOGLE_MAP_BASE_URL}&query={quote(restaurant.name)}&center={restaurant.latitude},{restaurant.longitude}"
    return f"{GOOGLE_MAP_BASE_URL}&query={restaurant.latitude},{restaurant.longitude}"


def build_restaurant_view(restaurant: RestaurantAndProfiles, service_instant: datetime) -> RestaurantView:
    """
    Reconcile a restaurant and its profiles into a view.

    Args:
        restaurant: Restaurant with all of its profiles
        service_instant: When the search wants to eat; opening hours are evaluated then
    """
    overpass = restaurant.profile_of(OVERPASS_SOURCE_NAME)
    tripadvisor = restaurant.profile_of(TRIPADVISOR_SOURCE_NAME)
    google = restaurant.profile_of(GOOGLE_PLACE_SOURCE_NAME)

    google_first = (google, tripadvisor, overpass)
    tripadvisor_first = (tripadvisor, google, overpass)

    rating, rating_count = compute_rating(google_first)
    website = _first(google_first, "website")
    opening_hours = _first(tripadvisor_first, "opening_hours")

    return RestaurantView(
        id=restaurant.id,
        name=restaurant.name or "",
        source=_first(google_first, "source") or OVERPASS_SOURCE_NAME,
        latitude=restaurant.latitude,
        longitude=restaurant.longitude,
        description=_first(tripadvisor_first, "description"),
        price_label=_first(google_first, "price_label"),
        image_url=_first(google_first, "image_url"),
        rating=rating,
        rating_count=rating_count,
        tags=list(_first(tripadvisor_first, "tags") or []),
        phone_number=_first(google_first, "phone_number"),
        international_phone_number=_first(google_first, "international_phone_number"),
        address=_first(google_first, "address"),
        opening_hours=opening_hours_of_the_day(service_instant, opening_hours) if opening_hours else None,
        urls=[url for url in (tripadvisor.source_url if tripadvisor else None, website) if url],
        map_url=_first((google, tripadvisor), "map_url") or build_map_url(restaurant),
    )
