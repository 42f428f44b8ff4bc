"""
Error taxonomy shared by the circuit breaker, provider clients and the search engine.

Every failure raised by a provider client derives from CircuitBreakerError and
answers is_retriable(), which the breaker uses to decide between a retry and an
immediate re-raise. Errors that do not derive from it are treated as retriable.

Cancellation is deliberately outside that hierarchy: it is never retried and never
counted as a circuit failure.

Usage:
    from app.core.errors import parse_response_error

    if response.is_success:
        return response.json()
    raise parse_response_error("Overpass", query, response, duration_ms)
"""

import math
from typing import Any, Optional

import httpx

__all__ = [
    "CircuitBreakerError",
    "CircuitOpenError",
    "OperationTimeoutError",
    "OperationCancelledError",
    "ProviderError",
    "ProviderServerError",
    "ProviderHttpError",
    "ProviderAuthorizationError",
    "ProviderEmptyResponseError",
    "ProviderInvalidResponseError",
    "AllProvidersFailedError",
    "SearchNotFoundError",
    "is_cancellation",
    "parse_response_error",
]


class CircuitBreakerError(Exception):
    """Base class for failures that know whether a retry could help."""

    def is_retriable(self) -> bool:
        raise NotImplementedError


class CircuitOpenError(CircuitBreakerError):
    """Raised without calling the operation while a circuit is OPEN."""

    def __init__(self, name: str, remaining_ms: float):
        self.name = name
        self.remaining_ms = max(0.0, remaining_ms)
        super().__init__(f"Circuit '{name}' is OPEN. Retrying in {math.ceil(self.remaining_ms / 1000)}s")

    def is_retriable(self) -> bool:
        return False


class OperationTimeoutError(CircuitBreakerError):
    """The breaker's own timeout fired before the operation completed."""

    def __init__(self, name: str, timeout_in_ms: int):
        self.name = name
        self.timeout_in_ms = timeout_in_ms
        super().__init__(f"Operation '{name}' timed out after {timeout_in_ms}ms")

    def is_retriable(self) -> bool:
        return True


class OperationCancelledError(Exception):
    """The caller's cancellation token fired."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Operation cancelled: {reason}")


class ProviderError(CircuitBreakerError):
    """A call to an external data provider failed."""

    retriable: bool = False
    label: str = "failed"

    def __init__(
        self,
        provider: str,
        query: str,
        status_code: int,
        body: Optional[Any],
        duration_ms: float,
        message: Optional[str] = None,
    ):
        self.provider = provider
        self.query = query
        self.status_code = status_code
        self.body = body
        self.duration_ms = duration_ms
        super().__init__(
            message
            or f"[{provider}] call {self.label} after {duration_ms:.0f} ms with status code {status_code}"
        )

    def is_retriable(self) -> bool:
        return self.retriable


class ProviderServerError(ProviderError):
    retriable = True
    label = "failed on the server side"


class ProviderHttpError(ProviderError):
    retriable = False
    label = "was refused"


class ProviderAuthorizationError(ProviderError):
    retriable = False

    def __init__(self, provider: str, query: str, status_code: int, body: Optional[Any], duration_ms: float):
        super().__init__(
            provider,
            query,
            status_code,
            body,
            duration_ms,
            message=f"[{provider}] You must define a valid API key. Status code received: {status_code}",
        )


class ProviderEmptyResponseError(ProviderError):
    retriable = True
    label = "returned an empty body"


class ProviderInvalidResponseError(ProviderError):
    retriable = True
    label = "returned a body that is not JSON"


class AllProvidersFailedError(Exception):
    """Every discovery strategy failed for one call."""

    def __init__(self, errors: list[tuple[str, BaseException]]):
        self.errors = errors
        names = ", ".join(name for name, _ in errors) or "none registered"
        super().__init__(f"All providers failed ({names})")


class SearchNotFoundError(Exception):
    def __init__(self, search_id: Any):
        self.search_id = search_id
        super().__init__(f"Search '{search_id}' not found")


def is_cancellation(error: BaseException) -> bool:
    return isinstance(error, OperationCancelledError)


def parse_response_error(
    provider: str,
    query: str,
    response: httpx.Response,
    duration_ms: float,
) -> ProviderError:
    """Map a non-successful HTTP response to the matching provider error."""
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text

    status_code = response.status_code
    if status_code in (401, 403):
        return ProviderAuthorizationError(provider, query, status_code, body, duration_ms)
    if status_code >= 500 or status_code == 429:
        return ProviderServerError(provider, query, status_code, body, duration_ms)
    return ProviderHttpError(provider, query, status_code, body, duration_ms)
