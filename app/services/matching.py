"""
Matching pipeline: resolve a discovered restaurant and run the matchers on it.

Matchers run one after the other in registration order. A matcher is skipped when
its profile is still fresh, when its monthly quota is spent, or when it already
tried this restaurant within the freshness window (found or not).
A failing matcher is skipped; the restaurant goes on with the profiles it already has.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from app.core.cancellation import CancellationToken
from app.core.errors import OperationCancelledError
from app.core.logging_config import get_logger
from app.core.typing import ensure_utc, utc_now
from app.models.restaurant import RestaurantAndProfiles
from app.repositories.matching import MatchingRepository
from app.repositories.restaurant import RestaurantRepository
from app.scraper.google import GOOGLE_PLACE_SOURCE_NAME
from app.scraper.overpass import OVERPASS_SOURCE_NAME
from app.scraper.tripadvisor import TRIPADVISOR_SOURCE_NAME
from app.services.discovery import DiscoveredRestaurantProfile
from app.services.matchers import Matcher
from app.services.tags import DEFAULT_TAG_CONFIGURATION, RestaurantTagConfiguration, filter_tags

logger = get_logger(__name__)

# Most trusted first
SOURCE_PRIORITY = (GOOGLE_PLACE_SOURCE_NAME, TRIPADVISOR_SOURCE_NAME, OVERPASS_SOURCE_NAME)


@dataclass(frozen=True)
class RestaurantMatchingConfiguration:
    tags: RestaurantTagConfiguration = DEFAULT_TAG_CONFIGURATION
    freshness_in_days: int = 30

    def freshness_window_start(self, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) - timedelta(days=self.freshness_in_days)


def should_be_matched(
    matcher: Matcher,
    restaurant: RestaurantAndProfiles,
    matching_repository: MatchingRepository,
    configuration: RestaurantMatchingConfiguration,
    now: Optional[datetime] = None,
) -> bool:
    window_start = configuration.freshness_window_start(now)
    profile = restaurant.profile_of(matcher.source)
    if profile is not None and ensure_utc(profile.updated_at) >= window_start:
        return False
    if matcher.has_reached_quota():
        logger.info("quota reached, skipping matcher", source=matcher.source)
        return False
    return not matching_repository.does_attempt_exist_since(window_start, restaurant.id, matcher.source)


def _first_known(restaurant: RestaurantAndProfiles, attribute: str) -> Any:
    for source in SOURCE_PRIORITY:
        profile = restaurant.profile_of(source)
        if profile is not None and getattr(profile, attribute) is not None:
            return getattr(profile, attribute)
    return getattr(restaurant, attribute)


def complete_restaurant_from_profiles(restaurant: RestaurantAndProfiles) -> RestaurantAndProfiles:
    """Fill name and coordinates from the most trusted profile that has each of them."""
    return replace(
        restaurant,
        name=_first_known(restaurant, "name"),
        latitude=_first_known(restaurant, "latitude"),
        longitude=_first_known(restaurant, "longitude"),
    )


async def enrich_restaurant(
    discovered: DiscoveredRestaurantProfile,
    language: str,
    restaurant_repository: RestaurantRepository,
    matching_repository: MatchingRepository,
    matchers: Iterable[Matcher],
    configuration: RestaurantMatchingConfiguration = RestaurantMatchingConfiguration(),
    token: Optional[CancellationToken] = None,
) -> RestaurantAndProfiles:
    restaurant = restaurant_repository.find_restaurant_with_external_identity(
        discovered.external_id, discovered.external_type, discovered.source
    )
    if restaurant is None:
        restaurant = restaurant_repository.create_restaurant_from_discovery(
            discovered, filter_tags(discovered.tags, configuration.tags)
        )
        logger.info("restaurant created", restaurant_id=restaurant.id, source=discovered.source)

    for matcher in matchers:
        if token is not None:
            token.raise_if_cancelled()
        if not should_be_matched(matcher, restaurant, matching_repository, configuration):
            continue
        try:
            matching = await matcher.match_and_enrich(restaurant, language, token)
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.exception(
                "matcher raised, skipping it", source=matcher.source, restaurant_id=restaurant.id, error=str(e)
            )
            continue
        restaurant = matching.restaurant

    return complete_restaurant_from_profiles(restaurant)
