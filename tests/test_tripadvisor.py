"""
Tests for the TripAdvisor client.

Tests cover:
1. Locale to language conversion
2. Opening hours conversion and photo selection
3. Nearby search, details and photos (httpx.MockTransport)
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import CircuitBreaker, FailoverConfiguration
from app.scraper.http import create_client
from app.scraper.tripadvisor import (
    TripAdvisorClient,
    TripAdvisorConfiguration,
    convert_hours_to_opening_hours,
    convert_locale_to_language,
    find_best_photo,
    parse_location_details,
    parse_photo_size,
    pick_photo_url,
)

BASE_URL = "https://tripadvisor.example/api/v1"

DETAILS = {
    "location_id": "123",
    "name": "Chez Léon",
    "latitude": "50.8478",
    "longitude": "4.3542",
    "address_obj": {"address_string": "Rue des Bouchers 18, 1000 Bruxelles", "country": "Belgium"},
    "rating": "4.0",
    "num_reviews": "2500",
    "price_level": "$$ - $$$",
    "cuisine": [{"name": "Belgian"}, {"name": "Seafood"}],
    "web_url": "https://www.tripadvisor.com/Restaurant_Review-123",
    "hours": {
        "periods": [
            {"open": {"day": day, "time": "1200"}, "close": {"day": day, "time": "2300"}} for day in range(1, 8)
        ]
    },
}

PHOTOS = {
    "data": [
        {"id": 1, "source": {"name": "Traveler"}, "images": {"large": {"url": "https://ta.example/1.jpg"}}},
        {"id": 2, "source": {"name": "Management"}, "images": {"large": {"url": "https://ta.example/2.jpg"}}},
    ]
}


class TestConversions:
    """Tests for payload conversions."""

    @pytest.mark.parametrize(
        "locale,language",
        [("fr-BE", "fr_BE"), ("fr-LU", "fr"), ("nl", "nl"), ("xx-YY", "en"), (None, "en"), ("en-US", "en")],
    )
    def test_locale(self, locale, language):
        assert convert_locale_to_language(locale) == language

    def test_opening_hours_every_day(self):
        assert convert_hours_to_opening_hours(DETAILS["hours"]) == "Mo-Su 12:00-23:00"

    def test_opening_hours_split_days(self):
        hours = {
            "periods": [
                {"open": {"day": 1, "time": "1130"}, "close": {"day": 1, "time": "1430"}},
                {"open": {"day": 2, "time": "1130"}, "close": {"day": 2, "time": "1430"}},
                {"open": {"day": 5, "time": "1800"}, "close": {"day": 5, "time": "2200"}},
            ]
        }
        assert convert_hours_to_opening_hours(hours) == "Mo,Tu 11:30-14:30; Fr 18:00-22:00"

    def test_opening_hours_missing(self):
        assert convert_hours_to_opening_hours(None) is None

    def test_parse_details(self):
        location = parse_location_details(DETAILS)

        assert location.id == "123"
        assert (location.latitude, location.longitude) == (50.8478, 4.3542)
        assert location.rating == 4.0
        assert location.number_of_reviews == 2500
        assert location.cuisine == ["Belgian", "Seafood"]
        assert location.opening_hours == "Mo-Su 12:00-23:00"

    def test_parse_details_without_location(self):
        assert parse_location_details({"error": {"message": "not found"}}) is None

    def test_best_photo(self):
        assert find_best_photo(PHOTOS["data"])["id"] == 2
        assert find_best_photo([{"id": 3, "is_blessed": True}, *PHOTOS["data"]])["id"] == 3
        assert find_best_photo([]) is None

    def test_photo_size(self):
        photo = {"images": {"original": {"url": "o.jpg"}, "small": {"url": "s.jpg"}}}

        assert pick_photo_url(photo, "small") == "s.jpg"
        assert pick_photo_url(photo, "large") == "o.jpg"
        assert parse_photo_size("huge") == "large"


def make_client(handler, **configuration) -> TripAdvisorClient:
    config = TripAdvisorConfiguration(api_key="secret", base_url=BASE_URL, **configuration)
    breaker = CircuitBreaker("tripadvisor", FailoverConfiguration(retry=0, timeout_in_ms=5000))
    return TripAdvisorClient(config, create_client(transport=httpx.MockTransport(handler)), breaker)


class TestTripAdvisorClient:
    """Tests for TripAdvisorClient."""

    @pytest.mark.asyncio
    async def test_search_nearby(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path.endswith("/nearby_search"):
                return httpx.Response(
                    200,
                    json={"data": [
                        {"location_id": "999", "name": "Pizzeria Bella", "distance": "0.01"},
                        {"location_id": "123", "name": "Chez Leon", "distance": "0.005"},
                    ]},
                )
            if request.url.path.endswith("/photos"):
                return httpx.Response(200, json=PHOTOS)
            return httpx.Response(200, json=DETAILS)

        client = make_client(handler)
        location = await client.search_nearby("Chez Léon", 50.8477, 4.3541, "fr-BE")
        await client.client.aclose()

        assert location.id == "123"
        assert location.image_url == "https://ta.example/2.jpg"

        nearby, details, photos = requests
        assert nearby.url.params["latLong"] == "50.8477,4.3541"
        assert nearby.url.params["key"] == "secret"
        assert nearby.url.params["radiusUnit"] == "m"
        assert details.url.path == "/api/v1/location/123/details"
        assert details.url.params["language"] == "fr_BE"
        assert photos.url.path == "/api/v1/location/123/photos"

    @pytest.mark.asyncio
    async def test_no_similar_location(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": [{"location_id": "999", "name": "Pizzeria Bella", "distance": "0.02"}]})

        client = make_client(handler)
        assert await client.search_nearby("Chez Léon", 50.8477, 4.3541) is None
        await client.client.aclose()

    @pytest.mark.asyncio
    async def test_find_by_id_without_photos(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/photos"):
                return httpx.Response(200, json={"data": []})
            return httpx.Response(200, json=DETAILS)

        client = make_client(handler)
        location = await client.find_by_id("123")
        await client.client.aclose()

        assert location.name == "Chez Léon"
        assert location.image_url is None

    @pytest.mark.asyncio
    async def test_attempt_token_reaches_the_request(self):
        """Each request gets the breaker's attempt token so a timeout cancels it in flight."""
        client = make_client(lambda request: httpx.Response(200, json=DETAILS))
        caller = CancellationToken()

        with patch("app.scraper.tripadvisor.request_json", new_callable=AsyncMock, return_value={"data": []}) as mock_request:
            await client.find_locations_nearby(50.8477, 4.3541, "en", caller)
        await client.client.aclose()

        token = mock_request.await_args.kwargs["token"]
        assert isinstance(token, CancellationToken)
        # Breaker token combining the caller and the per-attempt timeout
        assert token is not caller
