"""
Expanding-radius restaurant discovery.

The scanner asks the discovery strategies for restaurants around a point, widening
the radius on every call until the configured number of iterations is reached.
Identities already seen by the search are sent along so providers can leave them
out of their answer.
"""

from dataclasses import dataclass, field
from typing import Any, List, NamedTuple, Optional

from app.core.cancellation import CancellationToken
from app.core.logging_config import get_logger
from app.services.balancer import LoadBalancer

logger = get_logger(__name__)


class ProviderIdentity(NamedTuple):
    """Natural key of a place at a provider."""

    source: str
    external_id: str
    external_type: str

    @classmethod
    def of(cls, profile: Any) -> "ProviderIdentity":
        """Identity of anything carrying source/external_id/external_type (profiles included)."""
        return cls(profile.source, str(profile.external_id), profile.external_type)


@dataclass(frozen=True)
class DiscoveryConfiguration:
    range_increase_meters: int = 2_000
    max_discovery_iterations: int = 3


@dataclass
class DiscoveredRestaurantProfile:
    """What a discovery provider knows about a restaurant. Never stored as is."""

    source: str
    external_id: str
    external_type: str
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None
    country_code: Optional[str] = None
    state: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    map_url: Optional[str] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    phone_number: Optional[str] = None
    international_phone_number: Optional[str] = None
    price_range: Optional[int] = None
    price_label: Optional[str] = None
    opening_hours: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    operational: Optional[bool] = None
    website: Optional[str] = None
    source_url: Optional[str] = None

    @property
    def identity(self) -> ProviderIdentity:
        return ProviderIdentity(self.source, self.external_id, self.external_type)


class RestaurantDiscoveryScanner:
    """
    Iterative discovery around a point.

    Call k (1-based) scans `initial_range_in_meters + (k - 1) * range_increase_meters`.
    Once `max_discovery_iterations` calls were made the scanner is over: it returns
    empty batches without calling any provider.
    """

    def __init__(
        self,
        latitude: float,
        longitude: float,
        initial_range_in_meters: int,
        timeout_in_ms: int,
        configuration: DiscoveryConfiguration,
        strategies: LoadBalancer[List[DiscoveredRestaurantProfile]],
        identities_to_exclude: Optional[List[ProviderIdentity]] = None,
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.initial_range_in_meters = initial_range_in_meters
        self.timeout_in_ms = timeout_in_ms
        self.configuration = configuration
        self.strategies = strategies
        self._iteration = 0
        self._identities_to_exclude: List[ProviderIdentity] = []
        for identity in identities_to_exclude or []:
            self.add_identity_to_exclude(identity)

    @property
    def iteration(self) -> int:
        return self._iteration

    @property
    def is_over(self) -> bool:
        return self._iteration >= self.configuration.max_discovery_iterations

    @property
    def timeout_in_seconds(self) -> float:
        return self.timeout_in_ms / 1000

    @property
    def identities_to_exclude(self) -> List[ProviderIdentity]:
        return list(self._identities_to_exclude)

    def current_range_in_meters(self) -> int:
        return self.initial_range_in_meters + max(0, self._iteration - 1) * self.configuration.range_increase_meters

    async def next_restaurants(
        self, token: Optional[CancellationToken] = None
    ) -> List[DiscoveredRestaurantProfile]:
        if self.is_over:
            logger.debug("discovery over, max iterations reached", iteration=self._iteration)
            return []

        self._iteration += 1
        range_in_meters = self.current_range_in_meters()
        logger.info(
            "scanning",
            iteration=self._iteration,
            max_iterations=self.configuration.max_discovery_iterations,
            range_in_meters=range_in_meters,
            excluded=len(self._identities_to_exclude),
        )

        try:
            restaurants = await self.strategies.execute(
                self.latitude,
                self.longitude,
                range_in_meters,
                self.timeout_in_seconds,
                list(self._identities_to_exclude),
                token=token,
            )
        except Exception as e:
            logger.error("scan failed", iteration=self._iteration, error=str(e))
            raise

        logger.info("scan done", iteration=self._iteration, found=len(restaurants))
        return restaurants

    def add_identity_to_exclude(self, identity: Any) -> "RestaurantDiscoveryScanner":
        """Exclude a (source, external_id, external_type) identity; adding it twice is a no-op."""
        if identity is None:
            return self
        key = identity if isinstance(identity, ProviderIdentity) else ProviderIdentity.of(identity)
        if key not in self._identities_to_exclude:
            self._identities_to_exclude.append(key)
        return self
