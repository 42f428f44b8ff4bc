"""
Tests for the provider error taxonomy.

Tests cover:
1. HTTP status mapping in parse_response_error
2. is_retriable() of every error kind
3. AllProvidersFailedError / SearchNotFoundError messages
"""

import httpx
import pytest

from app.core.errors import (
    AllProvidersFailedError,
    CircuitBreakerError,
    CircuitOpenError,
    OperationCancelledError,
    ProviderAuthorizationError,
    ProviderEmptyResponseError,
    ProviderHttpError,
    ProviderServerError,
    SearchNotFoundError,
    parse_response_error,
)


def response(status_code: int, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("GET", "https://provider.test"), **kwargs)


class TestParseResponseError:
    """Tests for mapping HTTP responses to typed errors."""

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_authorization_errors(self, status_code):
        error = parse_response_error("TripAdvisor", "q", response(status_code, json={"error": "key"}), 12.0)
        assert isinstance(error, ProviderAuthorizationError)
        assert not error.is_retriable()
        assert "valid API key" in str(error)

    @pytest.mark.parametrize("status_code", [500, 502, 503, 429])
    def test_server_errors_are_retriable(self, status_code):
        error = parse_response_error("Overpass", "q", response(status_code, text="busy"), 12.0)
        assert isinstance(error, ProviderServerError)
        assert error.is_retriable()
        assert error.body == "busy"

    @pytest.mark.parametrize("status_code", [400, 404, 422])
    def test_client_errors_are_not_retriable(self, status_code):
        error = parse_response_error("Google Place", "q", response(status_code, json={"error": {}}), 12.0)
        assert isinstance(error, ProviderHttpError)
        assert not error.is_retriable()
        assert error.status_code == status_code
        assert error.body == {"error": {}}

    def test_message_mentions_provider_and_duration(self):
        error = parse_response_error("Overpass", "q", response(504), 1234.4)
        assert str(error) == "[Overpass] call failed on the server side after 1234 ms with status code 504"


class TestErrorKinds:
    """Tests for retriability of the other errors."""

    def test_circuit_open_is_not_retriable(self):
        error = CircuitOpenError("overpass:a", 4200)
        assert not error.is_retriable()
        assert "Retrying in 5s" in str(error)

    def test_empty_response_is_retriable(self):
        assert ProviderEmptyResponseError("Overpass", "q", 200, None, 1.0).is_retriable()

    def test_cancellation_is_outside_the_breaker_hierarchy(self):
        assert not isinstance(OperationCancelledError(), CircuitBreakerError)

    def test_all_providers_failed_lists_names(self):
        error = AllProvidersFailedError([("overpass:a", ValueError()), ("overpass:b", ValueError())])
        assert str(error) == "All providers failed (overpass:a, overpass:b)"
        assert str(AllProvidersFailedError([])) == "All providers failed (none registered)"

    def test_search_not_found(self):
        assert SearchNotFoundError(12).search_id == 12
