"""
Address search: free text to a few candidate locations for a new search.

One strategy per Nominatim and Photon instance, each behind its own breaker, all
behind the round-robin LoadBalancer used for discovery. Nominatim instances are
registered first.
"""

from typing import List, Optional

import httpx

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.logging_config import get_logger
from app.scraper.geocoding import (
    Coordinates,
    LocationSuggestions,
    NominatimConfiguration,
    PhotonConfiguration,
    fetch_locations_from_nominatim,
    fetch_locations_from_photon,
)
from app.services.balancer import LoadBalancer, ServiceStrategy

logger = get_logger(__name__)

MIN_QUERY_LENGTH = 2


def nominatim_strategy(
    instance_url: str,
    configuration: NominatimConfiguration,
    client: httpx.AsyncClient,
    registry: CircuitBreakerRegistry,
) -> ServiceStrategy[LocationSuggestions]:
    name = f"nominatim:{instance_url}"
    breaker = registry.get(name, configuration.failover)

    async def execute(
        query: str, bias: Optional[Coordinates] = None, token: Optional[CancellationToken] = None
    ) -> LocationSuggestions:
        return await breaker.execute(
            lambda attempt_token: fetch_locations_from_nominatim(
                client, instance_url, query, configuration, bias, attempt_token
            ),
            token,
        )

    return ServiceStrategy(name=name, execute=execute)


def photon_strategy(
    instance_url: str,
    configuration: PhotonConfiguration,
    client: httpx.AsyncClient,
    registry: CircuitBreakerRegistry,
) -> ServiceStrategy[LocationSuggestions]:
    name = f"photon:{instance_url}"
    breaker = registry.get(name, configuration.failover)

    async def execute(
        query: str, bias: Optional[Coordinates] = None, token: Optional[CancellationToken] = None
    ) -> LocationSuggestions:
        return await breaker.execute(
            lambda attempt_token: fetch_locations_from_photon(
                client, instance_url, query, configuration, bias, attempt_token
            ),
            token,
        )

    return ServiceStrategy(name=name, execute=execute)


def build_address_strategies(
    nominatim: Optional[NominatimConfiguration],
    photon: Optional[PhotonConfiguration],
    client: httpx.AsyncClient,
    registry: CircuitBreakerRegistry,
) -> LoadBalancer[LocationSuggestions]:
    strategies: List[ServiceStrategy[LocationSuggestions]] = []
    if nominatim is not None and nominatim.enabled:
        strategies.extend(nominatim_strategy(url, nominatim, client, registry) for url in nominatim.instance_urls)
    else:
        logger.info("nominatim address search disabled")
    if photon is not None and photon.enabled:
        strategies.extend(photon_strategy(url, photon, client, registry) for url in photon.instance_urls)
    else:
        logger.info("photon address search disabled")

    balancer: LoadBalancer[LocationSuggestions] = LoadBalancer(strategies)
    logger.info("address strategies registered", count=balancer.number_of_strategies)
    return balancer


async def search_locations(
    balancer: LoadBalancer[LocationSuggestions],
    query: str,
    bias: Optional[Coordinates] = None,
    token: Optional[CancellationToken] = None,
) -> LocationSuggestions:
    """Run the query on the first address provider that answers. Short queries return nothing."""
    query = query.strip()
    if len(query) < MIN_QUERY_LENGTH:
        return LocationSuggestions()

    logger.info("address search", query=query, biased=bias is not None)
    suggestions = await balancer.execute(query, bias, token=token)
    logger.info("address search done", query=query, count=len(suggestions.locations))
    return suggestions
