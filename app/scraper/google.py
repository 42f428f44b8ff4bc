"""
Google Places (New) API client used to enrich restaurants.

API Endpoints:
- GET  /places/{place_id}         - Place details
- POST /places:searchText         - Text search restricted to a rectangle
- GET  /{photo_name}/media        - Photo URI (skipHttpRedirect=true)

Only fields of the "Pro" SKU are requested; anything from the
"Enterprise + Atmosphere" SKU (reviews, summaries...) would change billing.
Docs: https://developers.google.com/maps/documentation/places/web-service/data-fields
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import httpx

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import CircuitBreaker, DEFAULT_FAILOVER, FailoverConfiguration
from app.scraper.http import request_json
from app.services.similarity import (
    SimilarityConfiguration,
    compute_distance_in_meters,
    compute_viewport_from_circle,
    score,
)

logger = logging.getLogger(__name__)

GOOGLE_PLACE_SOURCE_NAME = "google_place"
GOOGLE_PLACE_EXTERNAL_TYPE = "poi"
GOOGLE_PLACE_BASE_URL = "https://places.googleapis.com/v1"
PROVIDER_LABEL = "Google Place"

FIELDS_TO_FETCH = [
    "id",
    "name",
    "displayName",
    "location",
    "formattedAddress",
    "addressComponents",
    "shortFormattedAddress",
    "types",
    "businessStatus",
    "googleMapsUri",
    "rating",
    "regularOpeningHours",
    "nationalPhoneNumber",
    "internationalPhoneNumber",
    "priceLevel",
    "priceRange",
    "userRatingCount",
    "primaryType",
    "websiteUri",
    "photos",
]
SEARCH_FIELDS_MASK = ",".join(f"places.{name}" for name in FIELDS_TO_FETCH)
DETAIL_FIELDS_MASK = ",".join(FIELDS_TO_FETCH)
MAX_SEARCH_RESULTS = 3

PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}
OPERATIONAL_BUSINESS_STATUS = "OPERATIONAL"

# Google numbers days from Sunday (0); OSM weeks start on Monday
DAYS = ["Su", "Mo", "Tu", "We", "Th", "Fr", "Sa"]
OSM_DAY_ORDER = [1, 2, 3, 4, 5, 6, 0]


@dataclass(frozen=True)
class GooglePlaceConfiguration:
    api_key: str
    base_url: str = GOOGLE_PLACE_BASE_URL
    max_number_of_attempts_per_month: int = 200
    search_radius_in_meters: int = 50
    photo_max_width_px: int = 1024
    photo_max_height_px: int = 512
    similarity: SimilarityConfiguration = SimilarityConfiguration(
        name_weight=0.4, location_weight=0.6, max_distance_in_meters=50
    )
    failover: FailoverConfiguration = DEFAULT_FAILOVER


@dataclass
class GoogleRestaurant:
    """A Google place, flattened to what a restaurant profile needs."""

    id: str
    latitude: float
    longitude: float
    display_name: Optional[str] = None
    types: List[str] = field(default_factory=list)
    primary_type: Optional[str] = None
    national_phone_number: Optional[str] = None
    international_phone_number: Optional[str] = None
    formatted_address: Optional[str] = None
    short_formatted_address: Optional[str] = None
    country_code: Optional[str] = None
    rating: Optional[float] = None
    user_rating_count: Optional[int] = None
    google_maps_uri: Optional[str] = None
    website_uri: Optional[str] = None
    opening_hours: Optional[str] = None
    operational: Optional[bool] = None
    price_level: Optional[int] = None
    price_label: Optional[str] = None
    photo_ids: List[str] = field(default_factory=list)
    photo_url: Optional[str] = None


def convert_price_level(price_level: Optional[str]) -> Optional[int]:
    return PRICE_LEVELS.get(price_level) if price_level else None


def format_money(money: Dict[str, Any]) -> str:
    units = int(money.get("units") or 0)
    nanos = money.get("nanos") or 0
    value = units + nanos / 1_000_000_000
    amount = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{amount} {money.get('currencyCode') or 'EUR'}"


def format_price_range(price_range: Optional[Dict[str, Any]]) -> Optional[str]:
    if not price_range:
        return None
    start = format_money(price_range["startPrice"]) if price_range.get("startPrice") else None
    end = format_money(price_range["endPrice"]) if price_range.get("endPrice") else None
    if start and end:
        return start if start == end else f"{start} - {end}"
    if start:
        return f"From {start}"
    if end:
        return f"Up to {end}"
    return None


def format_prices(place: Dict[str, Any]) -> tuple[Optional[int], Optional[str]]:
    """(price level, label): "$$" style when Google gives a level, else the price range."""
    level = convert_price_level(place.get("priceLevel"))
    if level:
        return level, "$" * level
    return None, format_price_range(place.get("priceRange"))


def convert_business_status(status: Optional[str]) -> Optional[bool]:
    if not status:
        return None
    return status == OPERATIONAL_BUSINESS_STATUS


def _format_time(point: Optional[Dict[str, Any]]) -> str:
    if point and isinstance(point.get("hour"), int) and isinstance(point.get("minute", 0), int):
        return f"{point['hour']:02d}:{point.get('minute', 0):02d}"
    return "00:00"


def _format_day_range(indices: List[int]) -> str:
    ranges: List[List[int]] = []
    for current in indices:
        if ranges and (current == ranges[-1][1] + 1 or (ranges[-1][1] == 6 and current == 0)):
            ranges[-1][1] = current
        else:
            ranges.append([current, current])
    return ",".join(DAYS[start] if start == end else f"{DAYS[start]}-{DAYS[end]}" for start, end in ranges)


def convert_periods_to_opening_hours(regular_opening_hours: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Convert Google `regularOpeningHours.periods` to an OSM opening_hours string.

    Days sharing the same intervals are grouped ("Mo-Fr 12:00-14:00,19:00-22:00").
    A single period opening Sunday 00:00 without close means "24/7".
    """
    periods = (regular_opening_hours or {}).get("periods") or []
    if not periods:
        return None

    first = periods[0] or {}
    first_open = first.get("open") or {}
    if (
        len(periods) == 1
        and not first.get("close")
        and first_open.get("day") == 0
        and first_open.get("hour", 0) == 0
        and first_open.get("minute", 0) == 0
    ):
        return "24/7"

    day_schedule: Dict[int, List[str]] = {}
    for period in periods:
        if not period or (not period.get("close") and len(periods) > 1):
            continue
        open_point = period.get("open") or {}
        day = open_point.get("day")
        if day is None:
            continue
        end = _format_time(period["close"]) if period.get("close") else "24:00"
        day_schedule.setdefault(day, []).append(f"{_format_time(open_point)}-{end}")

    groups: Dict[str, List[int]] = {}
    for day in OSM_DAY_ORDER:
        intervals = day_schedule.get(day)
        if intervals:
            groups.setdefault(",".join(intervals), []).append(day)

    return "; ".join(f"{_format_day_range(days)} {hours}" for hours, days in groups.items()) or None


def parse_place(place: Optional[Dict[str, Any]]) -> Optional[GoogleRestaurant]:
    """Convert a Places API payload; places without a location are dropped."""
    if not place or not place.get("location"):
        return None

    price_level, price_label = format_prices(place)
    country_code = None
    for component in place.get("addressComponents") or []:
        if "country" in (component.get("types") or []) and component.get("shortText"):
            country_code = component["shortText"].lower()
            break

    return GoogleRestaurant(
        id=place.get("id"),
        latitude=place["location"].get("latitude"),
        longitude=place["location"].get("longitude"),
        display_name=(place.get("displayName") or {}).get("text"),
        types=place.get("types") or [],
        primary_type=place.get("primaryType"),
        national_phone_number=place.get("nationalPhoneNumber"),
        international_phone_number=place.get("internationalPhoneNumber"),
        formatted_address=place.get("formattedAddress"),
        short_formatted_address=place.get("shortFormattedAddress"),
        country_code=country_code,
        rating=place.get("rating"),
        user_rating_count=place.get("userRatingCount"),
        google_maps_uri=place.get("googleMapsUri"),
        website_uri=place.get("websiteUri"),
        opening_hours=convert_periods_to_opening_hours(place.get("regularOpeningHours")),
        operational=convert_business_status(place.get("businessStatus")),
        price_level=price_level,
        price_label=price_label,
        photo_ids=[photo["name"] for photo in place.get("photos") or [] if photo.get("name")],
    )


class GooglePlaceClient:
    """
    Places API calls, each one behind the "google_place" circuit breaker.

    Usage:
        client = GooglePlaceClient(configuration, http_client, registry.get("google_place"))
        restaurant = await client.search_by_text("Chez Léon", 50.8477, 4.3541, token)
    """

    def __init__(self, configuration: GooglePlaceConfiguration, client: httpx.AsyncClient, breaker: CircuitBreaker):
        self.configuration = configuration
        self.client = client
        self.breaker = breaker

    def _headers(self, field_mask: Optional[str] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "X-Goog-Api-Key": self.configuration.api_key}
        if field_mask:
            headers["X-Goog-FieldMask"] = field_mask
        return headers

    async def find_by_id(
        self, place_id: str, token: Optional[CancellationToken] = None
    ) -> Optional[GoogleRestaurant]:
        logger.info(f"[Google Place] Fetching details for place_id='{place_id}'")
        place = await self.breaker.execute(
            lambda attempt_token: request_json(
                self.client,
                PROVIDER_LABEL,
                "GET",
                f"{self.configuration.base_url}/places/{place_id}",
                f"place_id='{place_id}'",
                token=attempt_token,
                headers=self._headers(DETAIL_FIELDS_MASK),
            ),
            token,
        )
        restaurant = parse_place(place)
        if restaurant is None:
            logger.info(f"[Google Place] No place found for place_id='{place_id}'")
            return None
        return await self._with_photo(restaurant, token)

    async def search_by_text(
        self,
        text: str,
        latitude: float,
        longitude: float,
        token: Optional[CancellationToken] = None,
    ) -> Optional[GoogleRestaurant]:
        """Search places matching `text` around the point and keep the most similar one."""
        (low_lat, low_lon), (high_lat, high_lon) = compute_viewport_from_circle(
            latitude, longitude, self.configuration.search_radius_in_meters
        )
        body = {
            "textQuery": text,
            "maxResultCount": MAX_SEARCH_RESULTS,
            "rankPreference": "RELEVANCE",
            "includedType": "restaurant",
            "locationRestriction": {
                "rectangle": {
                    "low": {"latitude": low_lat, "longitude": low_lon},
                    "high": {"latitude": high_lat, "longitude": high_lon},
                }
            },
        }
        query = f"near '{latitude},{longitude}' with text='{text}'"
        logger.info(f"[Google Place] Searching {query}")

        payload = await self.breaker.execute(
            lambda attempt_token: request_json(
                self.client,
                PROVIDER_LABEL,
                "POST",
                f"{self.configuration.base_url}/places:searchText",
                query,
                token=attempt_token,
                json=body,
                headers=self._headers(SEARCH_FIELDS_MASK),
            ),
            token,
        )

        candidates = [parse_place(place) for place in payload.get("places") or []]
        best = self.find_best_match(text, latitude, longitude, [c for c in candidates if c is not None])
        if best is None:
            logger.info(f"[Google Place] No suitable match {query}")
            return None
        return await self._with_photo(best, token)

    def find_best_match(
        self, name: str, latitude: float, longitude: float, candidates: List[GoogleRestaurant]
    ) -> Optional[GoogleRestaurant]:
        best: Optional[GoogleRestaurant] = None
        best_score = -1.0
        for candidate in candidates:
            distance = compute_distance_in_meters((latitude, longitude), (candidate.latitude, candidate.longitude))
            result = score(name, candidate.display_name, distance, self.configuration.similarity)
            if result.total_score > best_score:
                best, best_score = candidate, result.total_score
        if best is None or best_score < self.configuration.similarity.min_score_threshold:
            return None
        return best

    async def find_photo_url(self, photo_name: str, token: Optional[CancellationToken] = None) -> Optional[str]:
        resource = photo_name if photo_name.endswith("/media") else f"{photo_name}/media"
        payload = await self.breaker.execute(
            lambda attempt_token: request_json(
                self.client,
                PROVIDER_LABEL,
                "GET",
                f"{self.configuration.base_url}/{resource}",
                f"photo='{photo_name}'",
                token=attempt_token,
                params={
                    "maxWidthPx": self.configuration.photo_max_width_px,
                    "maxHeightPx": self.configuration.photo_max_height_px,
                    "skipHttpRedirect": "true",
                },
                headers=self._headers(),
            ),
            token,
        )
        return payload.get("photoUri")

    async def _with_photo(
        self, restaurant: GoogleRestaurant, token: Optional[CancellationToken]
    ) -> GoogleRestaurant:
        if not restaurant.photo_ids:
            return restaurant
        photo_url = await self.find_photo_url(restaurant.photo_ids[0], token)
        return replace(restaurant, photo_url=photo_url) if photo_url else restaurant
