"""
Tests for the shared provider HTTP plumbing.

Tests cover:
1. JSON decoding and the typed errors for empty or non-JSON bodies
2. Cancellation of a request in flight through the attempt token
"""

import asyncio

import httpx
import pytest

from app.core.cancellation import CancellationToken
from app.core.errors import (
    OperationCancelledError,
    ProviderEmptyResponseError,
    ProviderInvalidResponseError,
    ProviderServerError,
)
from app.scraper.http import create_client, request_json

URL = "https://provider.example/api"


def make_client(handler) -> httpx.AsyncClient:
    return create_client(transport=httpx.MockTransport(handler))


class TestRequestJson:
    """Tests for request_json."""

    @pytest.mark.asyncio
    async def test_returns_decoded_body(self):
        client = make_client(lambda request: httpx.Response(200, json={"elements": []}))
        assert await request_json(client, "Test", "GET", URL, "q") == {"elements": []}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_retriable_provider_error(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

        with pytest.raises(ProviderInvalidResponseError) as exc_info:
            await request_json(client, "Test", "GET", URL, "q")
        await client.aclose()

        assert exc_info.value.is_retriable()
        assert exc_info.value.status_code == 200
        assert exc_info.value.body == "<html>maintenance</html>"
        assert "not JSON" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_body(self):
        client = make_client(lambda request: httpx.Response(200))

        with pytest.raises(ProviderEmptyResponseError):
            await request_json(client, "Test", "GET", URL, "q")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = make_client(lambda request: httpx.Response(503, text="busy"))

        with pytest.raises(ProviderServerError):
            await request_json(client, "Test", "GET", URL, "q")
        await client.aclose()


class TestCancellation:
    """Tests for the attempt token passed to request_json."""

    @pytest.mark.asyncio
    async def test_request_in_flight_is_cancelled(self):
        finished = []

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            finished.append(request)
            return httpx.Response(200, json={})

        client = make_client(slow)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel, "timeout")

        with pytest.raises(OperationCancelledError):
            await request_json(client, "Test", "GET", URL, "q", token=token)
        await client.aclose()

        assert finished == []

    @pytest.mark.asyncio
    async def test_cancelled_token_sends_nothing(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler)
        token = CancellationToken()
        token.cancel("user")

        with pytest.raises(OperationCancelledError):
            await request_json(client, "Test", "GET", URL, "q", token=token)
        await client.aclose()

        assert requests == []
