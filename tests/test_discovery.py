"""
Tests for restaurant discovery.

Tests cover:
1. Scanner radius widening and stop after max iterations
2. Idempotent identity exclusion
3. Overpass strategies (mapping, exclusions, breaker names)
"""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from app.core.circuit_breaker import CircuitBreakerRegistry, FailoverConfiguration
from app.core.errors import AllProvidersFailedError
from app.scraper.http import create_client
from app.scraper.overpass import OverpassConfiguration, OverpassRestaurant
from app.services.balancer import LoadBalancer, ServiceStrategy
from app.services.discovery import DiscoveryConfiguration, ProviderIdentity, RestaurantDiscoveryScanner
from app.services.discovery_providers import build_discovery_strategies, build_tags, from_overpass
from conftest import make_discovered, make_profile

CONFIG = DiscoveryConfiguration(range_increase_meters=2000, max_discovery_iterations=3)


def make_scanner(execute: AsyncMock, identities=None) -> RestaurantDiscoveryScanner:
    return RestaurantDiscoveryScanner(
        latitude=50.85,
        longitude=4.35,
        initial_range_in_meters=1500,
        timeout_in_ms=5000,
        configuration=CONFIG,
        strategies=LoadBalancer([ServiceStrategy("fake", execute)]),
        identities_to_exclude=identities,
    )


class TestRestaurantDiscoveryScanner:
    """Tests for RestaurantDiscoveryScanner."""

    @pytest.mark.asyncio
    async def test_radius_widens_and_scanner_stops(self):
        """Calls scan 1500, 3500 and 5500 meters, then the scanner is over."""
        execute = AsyncMock(return_value=[])
        scanner = make_scanner(execute)

        for _ in range(3):
            assert not scanner.is_over
            assert await scanner.next_restaurants() == []
        assert scanner.is_over

        assert [c.args[2] for c in execute.await_args_list] == [1500, 3500, 5500]
        assert all(c.args[3] == 5.0 for c in execute.await_args_list)

        # Over: no more provider calls
        assert await scanner.next_restaurants() == []
        assert execute.await_count == 3
        assert scanner.is_over

    @pytest.mark.asyncio
    async def test_returns_discovered_restaurants(self):
        discovered = [make_discovered("1"), make_discovered("2")]
        scanner = make_scanner(AsyncMock(return_value=discovered))
        assert await scanner.next_restaurants() == discovered
        assert scanner.iteration == 1

    @pytest.mark.asyncio
    async def test_failures_propagate(self):
        scanner = make_scanner(AsyncMock(side_effect=ValueError("down")))
        with pytest.raises(AllProvidersFailedError):
            await scanner.next_restaurants()
        assert scanner.iteration == 1

    @pytest.mark.asyncio
    async def test_exclusions_are_sent_to_strategies(self):
        execute = AsyncMock(return_value=[])
        scanner = make_scanner(execute, identities=[make_profile("osm", external_id="42", external_type="way")])
        scanner.add_identity_to_exclude(make_discovered("7"))

        await scanner.next_restaurants()
        assert execute.await_args.args[4] == [ProviderIdentity("osm", "42", "way"), ProviderIdentity("osm", "7", "node")]

    def test_add_identity_is_idempotent_and_chainable(self):
        scanner = make_scanner(AsyncMock())
        result = (
            scanner.add_identity_to_exclude(ProviderIdentity("osm", "1", "node"))
            .add_identity_to_exclude(make_discovered("1"))
            .add_identity_to_exclude(make_profile("osm", external_id="1", external_type="node"))
        )
        assert result is scanner
        assert scanner.identities_to_exclude == [ProviderIdentity("osm", "1", "node")]

    def test_identity_uses_all_three_fields(self):
        scanner = make_scanner(AsyncMock())
        scanner.add_identity_to_exclude(ProviderIdentity("osm", "1", "node"))
        scanner.add_identity_to_exclude(ProviderIdentity("osm", "1", "way"))
        scanner.add_identity_to_exclude(ProviderIdentity("tripadvisor", "1", "node"))
        assert len(scanner.identities_to_exclude) == 3


class TestFromOverpass:
    """Tests for the Overpass to discovered profile mapping."""

    def test_maps_fields(self):
        overpass = OverpassRestaurant(
            id=123,
            type="node",
            name="Chez Léon",
            latitude=50.8477,
            longitude=4.3541,
            open_street_map_url="https://www.openstreetmap.org/node/123",
            amenity="restaurant",
            cuisine=["belgian", "seafood"],
            country_code="be",
            formatted_address="Rue des Bouchers, 18, 1000 Bruxelles",
            phone_number="+32 2 511 14 15",
            opening_hours="Mo-Su 12:00-23:00",
            website="https://chezleon.be",
        )
        profile = from_overpass(overpass)

        assert profile.identity == ProviderIdentity("osm", "123", "node")
        assert profile.address == "Rue des Bouchers, 18, 1000 Bruxelles"
        assert profile.phone_number == profile.international_phone_number == "+32 2 511 14 15"
        assert profile.map_url == profile.source_url == "https://www.openstreetmap.org/node/123"
        assert profile.tags == ["belgian", "seafood"]
        assert profile.operational is True
        assert profile.image_url is None

    def test_tags_include_diet_and_fast_food(self):
        overpass = OverpassRestaurant(
            id=1,
            type="way",
            name="Green Burger",
            latitude=1.0,
            longitude=2.0,
            open_street_map_url="",
            amenity="fast_food",
            cuisine=["burger", "vegan"],
            vegan="only",
            vegetarian="yes",
        )
        assert build_tags(overpass) == ["burger", "vegan", "fast_food", "vegetarian"]


def overpass_body(*elements):
    return {"version": 0.6, "generator": "Overpass API", "osm3s": {}, "elements": list(elements)}


class TestOverpassStrategies:
    """Tests for the Overpass discovery strategies."""

    @pytest.mark.asyncio
    async def test_one_strategy_per_instance_with_failover(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            if "first" in str(request.url):
                return httpx.Response(400, json={"error": "bad"})
            return httpx.Response(
                200,
                json=overpass_body(
                    {"type": "node", "id": 9, "lat": 50.85, "lon": 4.35, "tags": {"name": "Fin de Siècle", "amenity": "restaurant"}}
                ),
            )

        configuration = OverpassConfiguration(
            instance_urls=("https://first.test/api/interpreter", "https://second.test/api/interpreter"),
            failover=FailoverConfiguration(retry=0, timeout_in_ms=1000, half_open_after_in_ms=1000, consecutive_failures=5),
        )
        registry = CircuitBreakerRegistry()
        async with create_client(transport=httpx.MockTransport(handler)) as client:
            balancer = build_discovery_strategies(configuration, client, registry)
            restaurants = await balancer.execute(50.85, 4.35, 1500, 5.0, [], token=None)

        assert balancer.names == [
            "overpass:https://first.test/api/interpreter",
            "overpass:https://second.test/api/interpreter",
        ]
        assert [r.name for r in restaurants] == ["Fin de Siècle"]
        assert calls == ["https://first.test/api/interpreter", "https://second.test/api/interpreter"]
        assert registry.get_all_states() == {
            "overpass:https://first.test/api/interpreter": "closed",
            "overpass:https://second.test/api/interpreter": "closed",
        }

    @pytest.mark.asyncio
    async def test_only_osm_identities_are_excluded(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["query"] = parse_qs(request.content.decode())["data"][0]
            return httpx.Response(200, json=overpass_body())

        configuration = OverpassConfiguration(instance_urls=("https://only.test/api/interpreter",))
        async with create_client(transport=httpx.MockTransport(handler)) as client:
            balancer = build_discovery_strategies(configuration, client, CircuitBreakerRegistry())
            identities = [ProviderIdentity("osm", "1", "node"), ProviderIdentity("tripadvisor", "2", "place")]
            assert await balancer.execute(50.85, 4.35, 3500, 4.2, identities, token=None) == []

        assert "node(id:1);" in seen["query"]
        assert "id:2" not in seen["query"]
        assert "[timeout:5]" in seen["query"]
        assert "around:3500, 50.85, 4.35" in seen["query"]

    def test_disabled_overpass_has_no_strategy(self):
        balancer = build_discovery_strategies(
            OverpassConfiguration(enabled=False), MagicMock(), CircuitBreakerRegistry()
        )
        assert balancer.number_of_strategies == 0
