"""
Discovery strategies: one per Overpass instance, each behind its own breaker.

Strategies are named "overpass:<instance url>" and so are their breakers, which
keeps a flaky instance from being retried while the others answer.
"""

import math
from typing import List, Optional

import httpx

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.logging_config import get_logger
from app.scraper.overpass import (
    OVERPASS_SOURCE_NAME,
    OverpassConfiguration,
    OverpassRestaurant,
    fetch_restaurants_nearby,
)
from app.services.balancer import LoadBalancer, ServiceStrategy
from app.services.discovery import DiscoveredRestaurantProfile, ProviderIdentity

logger = get_logger(__name__)

DIET_VALUES = ("yes", "only")


def build_tags(overpass: OverpassRestaurant) -> List[str]:
    tags = list(overpass.cuisine)
    if overpass.amenity == "fast_food":
        tags.append("fast_food")
    if overpass.vegan in DIET_VALUES:
        tags.append("vegan")
    if overpass.vegetarian in DIET_VALUES:
        tags.append("vegetarian")
    # dict.fromkeys keeps the first occurrence order
    return list(dict.fromkeys(tags))


def from_overpass(overpass: OverpassRestaurant) -> DiscoveredRestaurantProfile:
    return DiscoveredRestaurantProfile(
        source=OVERPASS_SOURCE_NAME,
        external_id=str(overpass.id),
        external_type=overpass.type,
        latitude=overpass.latitude,
        longitude=overpass.longitude,
        name=overpass.name or None,
        address=overpass.formatted_address or None,
        country_code=overpass.country_code or None,
        state=overpass.address_state or None,
        description=overpass.description or None,
        image_url=overpass.image_url or None,
        map_url=overpass.open_street_map_url,
        phone_number=overpass.phone_number or None,
        international_phone_number=overpass.phone_number or None,
        opening_hours=overpass.opening_hours or None,
        tags=build_tags(overpass),
        operational=overpass.operational,
        website=overpass.website or None,
        source_url=overpass.open_street_map_url,
    )


def overpass_strategy(
    instance_url: str,
    configuration: OverpassConfiguration,
    client: httpx.AsyncClient,
    registry: CircuitBreakerRegistry,
) -> ServiceStrategy[List[DiscoveredRestaurantProfile]]:
    name = f"overpass:{instance_url}"
    breaker = registry.get(name, configuration.failover)

    async def execute(
        latitude: float,
        longitude: float,
        range_in_meters: int,
        timeout_in_seconds: float,
        identities_to_exclude: List[ProviderIdentity],
        token: Optional[CancellationToken] = None,
    ) -> List[DiscoveredRestaurantProfile]:
        ids_to_exclude = [
            (identity.external_id, identity.external_type)
            for identity in identities_to_exclude
            if identity.source == OVERPASS_SOURCE_NAME
        ]
        response = await breaker.execute(
            lambda attempt_token: fetch_restaurants_nearby(
                client,
                instance_url,
                latitude,
                longitude,
                range_in_meters,
                math.ceil(timeout_in_seconds),
                ids_to_exclude,
                attempt_token,
            ),
            token,
        )
        return [from_overpass(restaurant) for restaurant in response.restaurants]

    return ServiceStrategy(name=name, execute=execute)


def build_discovery_strategies(
    overpass: Optional[OverpassConfiguration],
    client: httpx.AsyncClient,
    registry: CircuitBreakerRegistry,
) -> LoadBalancer[List[DiscoveredRestaurantProfile]]:
    strategies = []
    if overpass is not None and overpass.enabled:
        strategies.extend(overpass_strategy(url, overpass, client, registry) for url in overpass.instance_urls)
    else:
        logger.info("overpass discovery disabled")

    balancer: LoadBalancer[List[DiscoveredRestaurantProfile]] = LoadBalancer(strategies)
    logger.info("discovery strategies registered", count=balancer.number_of_strategies)
    return balancer
