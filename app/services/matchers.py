"""
Matchers enrich a restaurant with the profile of one paid provider.

A matcher looks the restaurant up by the provider id when a profile already exists
and by name around its coordinates otherwise. Every completed lookup is logged as
a matching attempt (found or not), which is what the monthly quota counts.
Any provider failure only drops that matcher's contribution: it is logged and
returned as an unmatched Matching carrying the error message.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol

import httpx

from app.core.cancellation import CancellationToken
from app.core.errors import CircuitBreakerError, OperationCancelledError
from app.core.logging_config import get_logger
from app.models.restaurant import RestaurantAndProfiles, RestaurantProfile
from app.repositories.matching import MatchingRepository
from app.repositories.restaurant import RestaurantRepository
from app.scraper.google import (
    GOOGLE_PLACE_EXTERNAL_TYPE,
    GOOGLE_PLACE_SOURCE_NAME,
    GooglePlaceClient,
    GoogleRestaurant,
)
from app.scraper.tripadvisor import (
    TRIPADVISOR_EXTERNAL_TYPE,
    TRIPADVISOR_SOURCE_NAME,
    TripAdvisorClient,
    TripAdvisorLocation,
)
from app.services.tags import DEFAULT_TAG_CONFIGURATION, RestaurantTagConfiguration, filter_tags

logger = get_logger(__name__)

QUERY_TYPE_ID = "id"
QUERY_TYPE_TEXT = "text"


@dataclass
class Matching:
    restaurant: RestaurantAndProfiles
    matched: bool
    error: Optional[str] = None


class Matcher(Protocol):
    source: str

    async def match_and_enrich(
        self, restaurant: RestaurantAndProfiles, language: str, token: Optional[CancellationToken] = None
    ) -> Matching: ...

    def has_reached_quota(self) -> bool: ...


def _pick(value: Any, profile: Optional[RestaurantProfile], attribute: str) -> Any:
    """Fresh value, else what the previous profile had, else None."""
    if value is not None:
        return value
    if profile is not None:
        return getattr(profile, attribute)
    return None


def _next_version(profile: Optional[RestaurantProfile]) -> int:
    return (profile.version if profile and profile.version else 0) + 1


class ProviderMatcher:
    """Lookup, attempt logging and profile upsert shared by the provider matchers."""

    source: str = ""

    def __init__(
        self,
        restaurant_repository: RestaurantRepository,
        matching_repository: MatchingRepository,
        max_number_of_attempts_per_month: int,
        search_radius_in_meters: int,
        tag_configuration: RestaurantTagConfiguration = DEFAULT_TAG_CONFIGURATION,
    ):
        self.restaurant_repository = restaurant_repository
        self.matching_repository = matching_repository
        self.max_number_of_attempts_per_month = max_number_of_attempts_per_month
        self.search_radius_in_meters = search_radius_in_meters
        self.tag_configuration = tag_configuration

    def has_reached_quota(self) -> bool:
        return self.matching_repository.has_reached_quota(self.source, self.max_number_of_attempts_per_month)

    async def find_by_id(self, external_id: str, language: str, token: Optional[CancellationToken]) -> Any:
        raise NotImplementedError

    async def search(
        self, name: str, latitude: float, longitude: float, language: str, token: Optional[CancellationToken]
    ) -> Any:
        raise NotImplementedError

    def merge(self, found: Any, profile: Optional[RestaurantProfile]) -> Dict[str, Any]:
        raise NotImplementedError

    async def match_and_enrich(
        self, restaurant: RestaurantAndProfiles, language: str, token: Optional[CancellationToken] = None
    ) -> Matching:
        profile = restaurant.profile_of(self.source)
        latitude: Optional[float] = None
        longitude: Optional[float] = None
        radius: Optional[int] = None

        if profile is not None and profile.external_id:
            query_type, query = QUERY_TYPE_ID, profile.external_id
        elif restaurant.name:
            query_type, query = QUERY_TYPE_TEXT, restaurant.name
            latitude, longitude, radius = restaurant.latitude, restaurant.longitude, self.search_radius_in_meters
        else:
            logger.info("nothing to look up", source=self.source, restaurant_id=restaurant.id)
            return Matching(restaurant=restaurant, matched=False)

        try:
            if query_type == QUERY_TYPE_ID:
                found = await self.find_by_id(query, language, token)
            else:
                found = await self.search(query, restaurant.latitude, restaurant.longitude, language, token)
        except OperationCancelledError:
            raise
        except (CircuitBreakerError, httpx.HTTPError) as e:
            logger.warning(
                "matching failed",
                source=self.source,
                restaurant_id=restaurant.id,
                query_type=query_type,
                error=str(e),
            )
            return Matching(restaurant=restaurant, matched=False, error=str(e))
        except Exception as e:
            logger.exception(
                "matching failed unexpectedly",
                source=self.source,
                restaurant_id=restaurant.id,
                query_type=query_type,
                error=str(e),
            )
            return Matching(restaurant=restaurant, matched=False, error=str(e))

        self.matching_repository.register_attempt_to_find_a_match(
            query=query,
            query_type=query_type,
            source=self.source,
            restaurant_id=restaurant.id,
            found=found is not None,
            latitude=latitude,
            longitude=longitude,
            radius=radius,
        )

        if found is None:
            logger.info("no match", source=self.source, restaurant_id=restaurant.id, query_type=query_type)
            return Matching(restaurant=restaurant, matched=False)

        payload = self.merge(found, profile)
        # a profile row always has coordinates
        if payload["latitude"] is None or payload["longitude"] is None:
            payload["latitude"], payload["longitude"] = restaurant.latitude, restaurant.longitude

        if profile is not None and profile.id is not None:
            enriched = self.restaurant_repository.update_profile(profile.id, payload, restaurant)
        else:
            enriched = self.restaurant_repository.create_profile(payload, restaurant)

        logger.info(
            "matched",
            source=self.source,
            restaurant_id=restaurant.id,
            external_id=payload["external_id"],
            version=payload["version"],
        )
        return Matching(restaurant=enriched, matched=True)


class TripAdvisorMatcher(ProviderMatcher):
    source = TRIPADVISOR_SOURCE_NAME

    def __init__(
        self,
        client: TripAdvisorClient,
        restaurant_repository: RestaurantRepository,
        matching_repository: MatchingRepository,
        tag_configuration: RestaurantTagConfiguration = DEFAULT_TAG_CONFIGURATION,
    ):
        super().__init__(
            restaurant_repository,
            matching_repository,
            client.configuration.max_number_of_attempts_per_month,
            client.configuration.search_radius_in_meters,
            tag_configuration,
        )
        self.client = client

    async def find_by_id(self, external_id, language, token):
        return await self.client.find_by_id(external_id, language, token)

    async def search(self, name, latitude, longitude, language, token):
        return await self.client.search_nearby(name, latitude, longitude, language, token)

    def merge(self, found: TripAdvisorLocation, profile: Optional[RestaurantProfile]) -> Dict[str, Any]:
        return {
            "source": TRIPADVISOR_SOURCE_NAME,
            "external_id": str(found.id),
            "external_type": TRIPADVISOR_EXTERNAL_TYPE,
            "version": _next_version(profile),
            "name": _pick(found.name, profile, "name"),
            "latitude": _pick(found.latitude, profile, "latitude"),
            "longitude": _pick(found.longitude, profile, "longitude"),
            "address": _pick(found.address, profile, "address"),
            "country_code": _pick(found.country, profile, "country_code"),
            "state": _pick(found.state, profile, "state"),
            "description": _pick(found.description, profile, "description"),
            "image_url": _pick(found.image_url, profile, "image_url"),
            "map_url": profile.map_url if profile else None,
            "rating": _pick(found.rating, profile, "rating"),
            "rating_count": _pick(found.number_of_reviews, profile, "rating_count"),
            "phone_number": _pick(found.phone, profile, "phone_number"),
            "international_phone_number": _pick(found.phone, profile, "international_phone_number"),
            "price_range": profile.price_range if profile else None,
            "price_label": _pick(found.price_level, profile, "price_label"),
            "opening_hours": _pick(found.opening_hours, profile, "opening_hours"),
            "tags": filter_tags(found.cuisine or (profile.tags if profile else []), self.tag_configuration),
            "operational": profile.operational if profile else None,
            "website": _pick(found.website, profile, "website"),
            "source_url": _pick(found.web_url, profile, "source_url"),
        }


class GoogleMatcher(ProviderMatcher):
    source = GOOGLE_PLACE_SOURCE_NAME

    def __init__(
        self,
        client: GooglePlaceClient,
        restaurant_repository: RestaurantRepository,
        matching_repository: MatchingRepository,
        tag_configuration: RestaurantTagConfiguration = DEFAULT_TAG_CONFIGURATION,
    ):
        super().__init__(
            restaurant_repository,
            matching_repository,
            client.configuration.max_number_of_attempts_per_month,
            client.configuration.search_radius_in_meters,
            tag_configuration,
        )
        self.client = client

    async def find_by_id(self, external_id, language, token):
        return await self.client.find_by_id(external_id, token)

    async def search(self, name, latitude, longitude, language, token):
        return await self.client.search_by_text(name, latitude, longitude, token)

    def merge(self, found: GoogleRestaurant, profile: Optional[RestaurantProfile]) -> Dict[str, Any]:
        return {
            "source": GOOGLE_PLACE_SOURCE_NAME,
            "external_id": found.id,
            "external_type": GOOGLE_PLACE_EXTERNAL_TYPE,
            "version": _next_version(profile),
            "name": _pick(found.display_name, profile, "name"),
            "latitude": _pick(found.latitude, profile, "latitude"),
            "longitude": _pick(found.longitude, profile, "longitude"),
            "address": _pick(found.formatted_address or found.short_formatted_address, profile, "address"),
            "country_code": _pick(found.country_code, profile, "country_code"),
            "state": profile.state if profile else None,
            "description": profile.description if profile else None,
            "image_url": _pick(found.photo_url, profile, "image_url"),
            "map_url": _pick(found.google_maps_uri, profile, "map_url"),
            "rating": _pick(found.rating, profile, "rating"),
            "rating_count": _pick(found.user_rating_count, profile, "rating_count"),
            "phone_number": _pick(found.national_phone_number, profile, "phone_number"),
            "international_phone_number": _pick(
                found.international_phone_number, profile, "international_phone_number"
            ),
            "price_range": _pick(found.price_level, profile, "price_range"),
            "price_label": _pick(found.price_label, profile, "price_label"),
            "opening_hours": _pick(found.opening_hours, profile, "opening_hours"),
            "tags": filter_tags(found.types or (profile.tags if profile else []), self.tag_configuration),
            "operational": _pick(found.operational, profile, "operational"),
            "website": _pick(found.website_uri, profile, "website"),
            "source_url": _pick(found.google_maps_uri, profile, "source_url"),
        }


class MatcherRegistry:
    """Matchers in the order they run for every candidate."""

    def __init__(self, matchers: Optional[List[Matcher]] = None):
        self._matchers: List[Matcher] = list(matchers or [])

    def register(self, matcher: Matcher) -> "MatcherRegistry":
        self._matchers.append(matcher)
        return self

    @property
    def sources(self) -> List[str]:
        return [matcher.source for matcher in self._matchers]

    def __iter__(self) -> Iterator[Matcher]:
        return iter(list(self._matchers))

    def __len__(self) -> int:
        return len(self._matchers)
