"""
Shared httpx plumbing for provider clients.

Every provider call is timed and non-successful responses are turned into the
typed provider errors the circuit breaker understands (see app.core.errors).
Network failures raised by httpx are left untouched: they are retriable.
"""

import time
from typing import Any, Optional

import httpx

from app.core.cancellation import CancellationToken
from app.core.errors import ProviderEmptyResponseError, ProviderInvalidResponseError, parse_response_error

USER_AGENT = "bite-roulette/0.1 (restaurant search engine)"
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_ERROR_BODY_LENGTH = 500


def create_client(
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Build the AsyncClient shared by provider clients.

    The circuit breaker enforces the per-call deadline; the client timeout is only
    an upper bound for calls made outside of a breaker.
    """
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        transport=transport,
    )


async def request_json(
    client: httpx.AsyncClient,
    provider: str,
    method: str,
    url: str,
    query: str,
    token: Optional[CancellationToken] = None,
    **kwargs: Any,
) -> Any:
    """
    Send a request and return the decoded JSON body.

    Args:
        client: Shared AsyncClient
        provider: Provider label used in error messages ("Overpass", "TripAdvisor", ...)
        method: HTTP method
        url: Absolute URL
        query: Human readable description of the call, kept on errors
        token: Attempt token; the request is cancelled in flight when it fires
        **kwargs: Forwarded to httpx (params, json, data, headers)

    Raises:
        ProviderAuthorizationError, ProviderServerError, ProviderHttpError: non-2xx response
        ProviderEmptyResponseError: 2xx response without a body
        ProviderInvalidResponseError: 2xx response whose body is not JSON
        OperationCancelledError: the token fired before the response arrived
    """
    start = time.monotonic()
    if token is None:
        response = await client.request(method, url, **kwargs)
    else:
        response = await token.run(client.request(method, url, **kwargs))
    duration_ms = (time.monotonic() - start) * 1000

    if not response.is_success:
        raise parse_response_error(provider, query, response, duration_ms)

    if not response.content:
        raise ProviderEmptyResponseError(provider, query, response.status_code, None, duration_ms)

    try:
        body = response.json()
    except ValueError as e:
        raise ProviderInvalidResponseError(
            provider, query, response.status_code, response.text[:MAX_ERROR_BODY_LENGTH], duration_ms
        ) from e
    if body is None:
        raise ProviderEmptyResponseError(provider, query, response.status_code, None, duration_ms)
    return body
