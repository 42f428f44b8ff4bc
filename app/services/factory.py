"""
Application wiring: typed configuration objects, breaker registry, provider
clients, discovery strategies and matchers, all built from settings.

Long-lived pieces (HTTP client, breaker registry, discovery and address
balancers) are created once per process by `build_runtime()`. Repositories are
bound to a database session, so `build_search_context()` is called once per
request.
"""

from dataclasses import dataclass
from typing import List, Optional

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.core.circuit_breaker import (
    DEFAULT_FAILOVER,
    SLOW_NETWORK_FAILOVER,
    CircuitBreakerRegistry,
    DatabaseStateStore,
    FailoverConfiguration,
    MemoryStateStore,
)
from app.core.config import Settings, settings as default_settings
from app.core.logging_config import get_logger
from app.models.search import DistanceRange
from app.repositories.candidate import SqlCandidateRepository
from app.repositories.matching import SqlMatchingRepository
from app.repositories.restaurant import SqlRestaurantRepository
from app.repositories.search import SqlSearchRepository
from app.scraper.geocoding import LocationSuggestions, NominatimConfiguration, PhotonConfiguration
from app.scraper.google import GOOGLE_PLACE_SOURCE_NAME, GooglePlaceClient, GooglePlaceConfiguration
from app.scraper.http import create_client
from app.scraper.overpass import OverpassConfiguration
from app.scraper.tripadvisor import (
    TRIPADVISOR_SOURCE_NAME,
    TripAdvisorClient,
    TripAdvisorConfiguration,
    parse_photo_size,
)
from app.services.address import build_address_strategies
from app.services.balancer import LoadBalancer
from app.services.discovery import DiscoveredRestaurantProfile, DiscoveryConfiguration
from app.services.discovery_providers import build_discovery_strategies
from app.services.matchers import GoogleMatcher, MatcherRegistry, TripAdvisorMatcher
from app.services.matching import RestaurantMatchingConfiguration
from app.services.search_engine import DistanceBand, SearchContext, SearchEngineConfiguration
from app.services.similarity import SimilarityConfiguration
from app.services.tags import RestaurantTagConfiguration

logger = get_logger(__name__)


def failover_configuration(slow_network: bool) -> FailoverConfiguration:
    return SLOW_NETWORK_FAILOVER if slow_network else DEFAULT_FAILOVER


def tag_configuration(config: Settings = default_settings) -> RestaurantTagConfiguration:
    return RestaurantTagConfiguration(
        hidden_tags=tuple(config.hidden_tags),
        priority_tags=tuple(config.priority_tags),
        max_tags=config.TAGS_MAX,
    )


def discovery_configuration(config: Settings = default_settings) -> DiscoveryConfiguration:
    return DiscoveryConfiguration(
        range_increase_meters=config.DISCOVERY_RANGE_INCREASE_METERS,
        max_discovery_iterations=config.DISCOVERY_MAX_ITERATIONS,
    )


def search_engine_configuration(config: Settings = default_settings) -> SearchEngineConfiguration:
    return SearchEngineConfiguration(
        bands={
            DistanceRange.CLOSE: DistanceBand(config.RANGE_CLOSE_METERS, config.RANGE_CLOSE_TIMEOUT_MS),
            DistanceRange.MID_RANGE: DistanceBand(config.RANGE_MID_RANGE_METERS, config.RANGE_MID_RANGE_TIMEOUT_MS),
            DistanceRange.FAR: DistanceBand(config.RANGE_FAR_METERS, config.RANGE_FAR_TIMEOUT_MS),
        },
        discovery=discovery_configuration(config),
        idle_wait_in_seconds=config.DISCOVERY_IDLE_WAIT_SECONDS,
    )


def matching_configuration(config: Settings = default_settings) -> RestaurantMatchingConfiguration:
    return RestaurantMatchingConfiguration(
        tags=tag_configuration(config),
        freshness_in_days=config.MATCHING_FRESHNESS_DAYS,
    )


def overpass_configuration(config: Settings = default_settings) -> OverpassConfiguration:
    return OverpassConfiguration(
        enabled=config.OVERPASS_ENABLED,
        instance_urls=tuple(config.overpass_instance_urls),
        failover=failover_configuration(config.OVERPASS_SLOW_NETWORK),
    )


def nominatim_configuration(config: Settings = default_settings) -> NominatimConfiguration:
    return NominatimConfiguration(
        enabled=config.NOMINATIM_ENABLED,
        instance_urls=tuple(config.nominatim_instance_urls),
        user_agent=config.NOMINATIM_USER_AGENT,
        max_number_of_addresses=config.NOMINATIM_MAX_ADDRESSES,
        failover=failover_configuration(config.NOMINATIM_SLOW_NETWORK),
    )


def photon_configuration(config: Settings = default_settings) -> PhotonConfiguration:
    return PhotonConfiguration(
        enabled=config.PHOTON_ENABLED,
        instance_urls=tuple(config.photon_instance_urls),
        max_number_of_addresses=config.PHOTON_MAX_ADDRESSES,
        failover=failover_configuration(config.PHOTON_SLOW_NETWORK),
    )


def google_place_configuration(config: Settings = default_settings) -> Optional[GooglePlaceConfiguration]:
    if not config.GOOGLE_PLACE_ENABLED:
        return None
    return GooglePlaceConfiguration(
        api_key=config.GOOGLE_PLACE_API_KEY,
        base_url=config.GOOGLE_PLACE_BASE_URL,
        max_number_of_attempts_per_month=config.GOOGLE_PLACE_MAX_ATTEMPTS_PER_MONTH,
        search_radius_in_meters=config.GOOGLE_PLACE_SEARCH_RADIUS_METERS,
        photo_max_width_px=config.GOOGLE_PLACE_PHOTO_MAX_WIDTH_PX,
        photo_max_height_px=config.GOOGLE_PLACE_PHOTO_MAX_HEIGHT_PX,
        similarity=SimilarityConfiguration(
            name_weight=config.GOOGLE_PLACE_SIMILARITY_NAME_WEIGHT,
            location_weight=config.GOOGLE_PLACE_SIMILARITY_LOCATION_WEIGHT,
            max_distance_in_meters=config.GOOGLE_PLACE_SIMILARITY_MAX_DISTANCE_METERS,
        ),
        failover=failover_configuration(config.GOOGLE_PLACE_SLOW_NETWORK),
    )


def tripadvisor_configuration(config: Settings = default_settings) -> Optional[TripAdvisorConfiguration]:
    if not config.TRIPADVISOR_ENABLED:
        return None
    return TripAdvisorConfiguration(
        api_key=config.TRIPADVISOR_API_KEY,
        base_url=config.TRIPADVISOR_BASE_URL,
        max_number_of_attempts_per_month=config.TRIPADVISOR_MAX_ATTEMPTS_PER_MONTH,
        search_radius_in_meters=config.TRIPADVISOR_SEARCH_RADIUS_METERS,
        photo_size=parse_photo_size(config.TRIPADVISOR_PHOTO_SIZE),
        similarity=SimilarityConfiguration(
            name_weight=config.TRIPADVISOR_SIMILARITY_NAME_WEIGHT,
            location_weight=config.TRIPADVISOR_SIMILARITY_LOCATION_WEIGHT,
            max_distance_in_meters=config.TRIPADVISOR_SIMILARITY_MAX_DISTANCE_METERS,
            min_score_threshold=config.TRIPADVISOR_SIMILARITY_MIN_SCORE,
        ),
        failover=failover_configuration(config.TRIPADVISOR_SLOW_NETWORK),
    )


def build_breaker_registry(engine: Optional[Engine] = None, config: Settings = default_settings) -> CircuitBreakerRegistry:
    ttl = config.CIRCUIT_BREAKER_STATE_TTL_SECONDS
    if config.CIRCUIT_BREAKER_STATE_BACKEND == "database" and engine is not None:
        store = DatabaseStateStore(engine)
    else:
        store = MemoryStateStore()
    return CircuitBreakerRegistry(store=store, state_ttl_seconds=ttl)


@dataclass
class Runtime:
    """Process-wide collaborators shared by every search."""

    settings: Settings
    client: httpx.AsyncClient
    breakers: CircuitBreakerRegistry
    discovery: LoadBalancer[List[DiscoveredRestaurantProfile]]
    address: LoadBalancer[LocationSuggestions]
    tripadvisor: Optional[TripAdvisorClient] = None
    google: Optional[GooglePlaceClient] = None

    async def aclose(self) -> None:
        await self.client.aclose()


def build_runtime(
    config: Settings = default_settings,
    engine: Optional[Engine] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Runtime:
    client = client or create_client()
    breakers = build_breaker_registry(engine, config)
    discovery = build_discovery_strategies(overpass_configuration(config), client, breakers)
    address = build_address_strategies(nominatim_configuration(config), photon_configuration(config), client, breakers)

    tripadvisor = None
    tripadvisor_config = tripadvisor_configuration(config)
    if tripadvisor_config is not None:
        tripadvisor = TripAdvisorClient(
            tripadvisor_config, client, breakers.get(TRIPADVISOR_SOURCE_NAME, tripadvisor_config.failover)
        )

    google = None
    google_config = google_place_configuration(config)
    if google_config is not None:
        google = GooglePlaceClient(google_config, client, breakers.get(GOOGLE_PLACE_SOURCE_NAME, google_config.failover))

    logger.info(
        "runtime ready",
        discovery_strategies=discovery.names,
        address_strategies=address.names,
        tripadvisor=tripadvisor is not None,
        google_place=google is not None,
    )
    return Runtime(
        settings=config,
        client=client,
        breakers=breakers,
        discovery=discovery,
        address=address,
        tripadvisor=tripadvisor,
        google=google,
    )


def build_matchers(
    runtime: Runtime,
    restaurants: SqlRestaurantRepository,
    matchings: SqlMatchingRepository,
    tags: RestaurantTagConfiguration,
) -> MatcherRegistry:
    registry = MatcherRegistry()
    if runtime.tripadvisor is not None:
        registry.register(TripAdvisorMatcher(runtime.tripadvisor, restaurants, matchings, tags))
    if runtime.google is not None:
        registry.register(GoogleMatcher(runtime.google, restaurants, matchings, tags))
    return registry


def build_search_context(session: Session, runtime: Runtime) -> SearchContext:
    restaurants = SqlRestaurantRepository(session)
    matchings = SqlMatchingRepository(session)
    matching = matching_configuration(runtime.settings)
    return SearchContext(
        searches=SqlSearchRepository(session),
        candidates=SqlCandidateRepository(session),
        restaurants=restaurants,
        matchings=matchings,
        matchers=build_matchers(runtime, restaurants, matchings, matching.tags),
        discovery=runtime.discovery,
        configuration=search_engine_configuration(runtime.settings),
        matching=matching,
    )
