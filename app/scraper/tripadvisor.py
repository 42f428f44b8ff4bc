"""
TripAdvisor Content API client used to enrich restaurants.

API Endpoints:
- GET /location/{id}/details      - Location details (hours, cuisine, rating, ...)
- GET /location/{id}/photos       - Photos of a location
- GET /location/nearby_search     - Restaurants around a point (distance in miles)

The API key is passed as the `key` query parameter on every call.
Docs: https://tripadvisor-content-api.readme.io/reference/overview
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import httpx

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import CircuitBreaker, DEFAULT_FAILOVER, FailoverConfiguration
from app.scraper.http import request_json
from app.services.similarity import SimilarityConfiguration, score

logger = logging.getLogger(__name__)

TRIPADVISOR_SOURCE_NAME = "tripadvisor"
TRIPADVISOR_EXTERNAL_TYPE = "place"
TRIPADVISOR_BASE_URL = "https://api.content.tripadvisor.com/api/v1"
PROVIDER_LABEL = "TripAdvisor"

MILES_TO_METERS_FACTOR = 1609.344

PHOTO_SIZES = ("thumbnail", "small", "medium", "large", "original")
DEFAULT_PHOTO_SIZE = "large"

DEFAULT_LANGUAGE = "en"
ALLOWED_LANGUAGES = {
    "ar", "zh", "zh_TW", "da", "nl", "en_AU", "en_CA", "en_HK", "en_IN", "en_IE", "en_MY",
    "en_NZ", "en_PH", "en_SG", "en_ZA", "en_UK", "en", "fr", "fr_BE", "fr_CA", "fr_CH",
    "de_AT", "de", "el", "iw", "in", "it", "it_CH", "ja", "ko", "no", "pt_PT", "pt", "ru",
    "es_AR", "es_CO", "es_MX", "es_PE", "es", "es_VE", "es_CL", "sv", "th", "tr", "vi",
}

# TripAdvisor days: 1 = Monday ... 7 = Sunday (0 is seen for Sunday too)
DAY_NAMES = {1: "Mo", 2: "Tu", 3: "We", 4: "Th", 5: "Fr", 6: "Sa", 7: "Su", 0: "Su"}


@dataclass(frozen=True)
class TripAdvisorConfiguration:
    api_key: str
    base_url: str = TRIPADVISOR_BASE_URL
    max_number_of_attempts_per_month: int = 200
    search_radius_in_meters: int = 50
    photo_size: str = DEFAULT_PHOTO_SIZE
    similarity: SimilarityConfiguration = SimilarityConfiguration(
        name_weight=0.4, location_weight=0.6, max_distance_in_meters=50, min_score_threshold=0.6
    )
    failover: FailoverConfiguration = DEFAULT_FAILOVER


@dataclass
class TripAdvisorLocationNearby:
    location_id: str
    name: Optional[str]
    distance_in_meters: float
    address: Optional[str] = None


@dataclass
class TripAdvisorLocation:
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    web_url: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    rating: Optional[float] = None
    number_of_reviews: Optional[int] = None
    price_level: Optional[str] = None
    cuisine: List[str] = field(default_factory=list)
    opening_hours: Optional[str] = None
    image_url: Optional[str] = None


def parse_photo_size(value: Optional[str]) -> str:
    if value in PHOTO_SIZES:
        return value
    if value:
        logger.warning(f"[TripAdvisor] Invalid photo size '{value}', using '{DEFAULT_PHOTO_SIZE}'")
    return DEFAULT_PHOTO_SIZE


def convert_locale_to_language(locale: Optional[str]) -> str:
    """"fr-BE" -> "fr_BE" when supported, else "fr", else the default language."""
    if not locale:
        return DEFAULT_LANGUAGE
    parts = locale.replace("_", "-").split("-")
    language = parts[0].lower()
    if len(parts) > 1:
        regional = f"{language}_{parts[1].upper()}"
        if regional in ALLOWED_LANGUAGES:
            return regional
    return language if language in ALLOWED_LANGUAGES else DEFAULT_LANGUAGE


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_time(hhmm: str) -> str:
    if not hhmm or len(hhmm) != 4:
        return hhmm
    return f"{hhmm[:2]}:{hhmm[2:]}"


def _format_day_range(days: List[int]) -> str:
    ranges: List[List[int]] = []
    for day in sorted(days):
        if ranges and day == ranges[-1][-1] + 1:
            ranges[-1].append(day)
        else:
            ranges.append([day])

    parts = []
    for r in ranges:
        if len(r) > 2:
            parts.append(f"{DAY_NAMES[r[0]]}-{DAY_NAMES[r[-1]]}")
        elif len(r) == 2:
            parts.append(f"{DAY_NAMES[r[0]]},{DAY_NAMES[r[1]]}")
        else:
            parts.append(DAY_NAMES[r[0]])
    return ",".join(parts)


def convert_hours_to_opening_hours(hours: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Convert TripAdvisor `hours.periods` ({open: {day, time: "HHMM"}, close}) to OSM syntax.

    Days sharing the same time range are grouped, in order of first appearance.
    """
    groups: Dict[str, List[int]] = {}
    for period in (hours or {}).get("periods") or []:
        open_point = (period or {}).get("open")
        if not open_point:
            continue
        try:
            day = int(open_point.get("day"))
        except (TypeError, ValueError):
            continue
        if day not in DAY_NAMES:
            continue
        close_point = period.get("close")
        if close_point:
            time_range = f"{_format_time(open_point.get('time') or '0000')}-{_format_time(close_point.get('time') or '0000')}"
        else:
            time_range = "00:00-24:00"
        groups.setdefault(time_range, []).append(day)

    return "; ".join(f"{_format_day_range(days)} {time_range}" for time_range, days in groups.items()) or None


def parse_location_details(body: Any) -> Optional[TripAdvisorLocation]:
    if not body or not isinstance(body, dict) or not body.get("location_id"):
        return None

    address = body.get("address_obj") or {}
    return TripAdvisorLocation(
        id=str(body["location_id"]),
        name=body.get("name"),
        description=body.get("description") or None,
        latitude=_to_float(body.get("latitude")),
        longitude=_to_float(body.get("longitude")),
        address=address.get("address_string") or None,
        country=address.get("country") or None,
        state=address.get("state") or None,
        web_url=body.get("web_url"),
        website=body.get("website") or None,
        phone=body.get("phone") or None,
        rating=_to_float(body.get("rating")),
        number_of_reviews=int(body["num_reviews"]) if body.get("num_reviews") else None,
        price_level=body.get("price_level") or None,
        cuisine=[item["name"] for item in body.get("cuisine") or [] if item and item.get("name")],
        opening_hours=convert_hours_to_opening_hours(body.get("hours")),
    )


def parse_locations_nearby(data: Any) -> List[TripAdvisorLocationNearby]:
    if not isinstance(data, list):
        logger.warning(f"[TripAdvisor] Unexpected nearby payload: {data!r}")
        return []

    locations = []
    for item in data:
        if not item or not item.get("location_id"):
            continue
        distance_in_miles = _to_float(item.get("distance"))
        locations.append(
            TripAdvisorLocationNearby(
                location_id=str(item["location_id"]),
                name=item.get("name"),
                distance_in_meters=distance_in_miles * MILES_TO_METERS_FACTOR
                if distance_in_miles is not None
                else float("inf"),
                address=(item.get("address_obj") or {}).get("address_string"),
            )
        )
    return locations


def find_best_photo(photos: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Blessed photo first, then one from the management, then from an expert, then any."""
    if not photos:
        return None
    for predicate in (
        lambda photo: photo.get("is_blessed"),
        lambda photo: ((photo.get("source") or {}).get("name") or "").lower() == "management",
        lambda photo: ((photo.get("source") or {}).get("name") or "").lower() == "expert",
    ):
        for photo in photos:
            if predicate(photo):
                return photo
    return photos[0]


def pick_photo_url(photo: Dict[str, Any], preferred_size: str) -> Optional[str]:
    images = photo.get("images") or {}
    for size in (preferred_size, "large", "original", "medium", "small"):
        variant = images.get(size)
        if variant and variant.get("url"):
            return variant["url"]
    return None


class TripAdvisorClient:
    """Content API calls, each one behind the "tripadvisor" circuit breaker."""

    def __init__(self, configuration: TripAdvisorConfiguration, client: httpx.AsyncClient, breaker: CircuitBreaker):
        self.configuration = configuration
        self.client = client
        self.breaker = breaker

    async def _get(self, path: str, params: Dict[str, Any], token: Optional[CancellationToken]) -> Any:
        url = f"{self.configuration.base_url}{path}"
        # The key stays out of the query kept on errors
        query = f"{path}?{'&'.join(f'{k}={v}' for k, v in params.items())}"
        return await self.breaker.execute(
            lambda attempt_token: request_json(
                self.client,
                PROVIDER_LABEL,
                "GET",
                url,
                query,
                token=attempt_token,
                params={**params, "key": self.configuration.api_key},
            ),
            token,
        )

    async def find_by_id(
        self,
        location_id: str,
        locale: str = DEFAULT_LANGUAGE,
        token: Optional[CancellationToken] = None,
    ) -> Optional[TripAdvisorLocation]:
        logger.info(f"[TripAdvisor] Fetching location id='{location_id}'")
        body = await self._get(
            f"/location/{location_id}/details", {"language": convert_locale_to_language(locale)}, token
        )
        location = parse_location_details(body)
        if location is None:
            return None
        return await self._with_photo(location, locale, token)

    async def find_locations_nearby(
        self,
        latitude: float,
        longitude: float,
        locale: str = DEFAULT_LANGUAGE,
        token: Optional[CancellationToken] = None,
    ) -> List[TripAdvisorLocationNearby]:
        body = await self._get(
            "/location/nearby_search",
            {
                "locale": locale,
                "latLong": f"{latitude},{longitude}",
                "category": "restaurants",
                "radius": self.configuration.search_radius_in_meters,
                "radiusUnit": "m",
            },
            token,
        )
        return parse_locations_nearby(body.get("data") if isinstance(body, dict) else None)

    async def search_nearby(
        self,
        name: str,
        latitude: float,
        longitude: float,
        locale: str = DEFAULT_LANGUAGE,
        token: Optional[CancellationToken] = None,
    ) -> Optional[TripAdvisorLocation]:
        """Find the nearby location most similar to `name`, then fetch its details."""
        logger.info(f"[TripAdvisor] Searching '{name}' near [{latitude}, {longitude}]")
        locations = await self.find_locations_nearby(latitude, longitude, locale, token)
        best = self.find_best_match(name, locations)
        if best is None:
            logger.info(f"[TripAdvisor] No suitable match for '{name}'")
            return None
        return await self.find_by_id(best.location_id, locale, token)

    def find_best_match(
        self, name: str, candidates: List[TripAdvisorLocationNearby]
    ) -> Optional[TripAdvisorLocationNearby]:
        if not name or not candidates:
            return None
        scored = [
            (score(name, candidate.name, candidate.distance_in_meters, self.configuration.similarity), candidate)
            for candidate in candidates
        ]
        result, best = max(scored, key=lambda pair: pair[0].total_score)
        if result.total_score >= self.configuration.similarity.min_score_threshold:
            return best
        return None

    async def find_best_photo_url(
        self, location_id: str, locale: str = DEFAULT_LANGUAGE, token: Optional[CancellationToken] = None
    ) -> Optional[str]:
        body = await self._get(
            f"/location/{location_id}/photos", {"language": convert_locale_to_language(locale)}, token
        )
        photos = body.get("data") if isinstance(body, dict) else None
        photo = find_best_photo([p for p in photos or [] if p])
        return pick_photo_url(photo, self.configuration.photo_size) if photo else None

    async def _with_photo(
        self, location: TripAdvisorLocation, locale: str, token: Optional[CancellationToken]
    ) -> TripAdvisorLocation:
        image_url = await self.find_best_photo_url(location.id, locale, token)
        return replace(location, image_url=image_url) if image_url else location
