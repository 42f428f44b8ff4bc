"""
Search engine: discover, enrich and validate restaurants until one fits.

`search_candidate` is an async generator of progress events. It yields exactly one
ResultEvent per run unless it raises. Candidates are persisted as they are
evaluated, so a run that fails or is cancelled half way can simply be restarted:
already seen restaurants are excluded from discovery and candidate orders keep
increasing from where the previous run stopped.

Usage:
    async for event in search_candidate(search.id, "fr-BE", context, token):
        print(event.to_dict())
"""

import random
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, ClassVar, Dict, List, Optional

from app.core.cancellation import CancellationToken
from app.core.errors import SearchNotFoundError
from app.core.logging_config import get_logger, search_context
from app.models.search import CandidateStatus, DistanceRange, RejectionReason, SearchCandidate
from app.repositories.candidate import CandidateRepository
from app.repositories.matching import MatchingRepository
from app.repositories.restaurant import RestaurantRepository
from app.repositories.search import SearchRepository
from app.services.balancer import LoadBalancer
from app.services.discovery import (
    DiscoveredRestaurantProfile,
    DiscoveryConfiguration,
    RestaurantDiscoveryScanner,
)
from app.services.matchers import MatcherRegistry
from app.services.matching import RestaurantMatchingConfiguration, enrich_restaurant
from app.services.validator import Validator, validate_restaurant

logger = get_logger(__name__)

SEARCHING_MESSAGES = [
    "Reticulating flavor splines!",
    "Hamsters are deciding.",
    "Spinning foodie fortune!",
    "Magic 8-ball says: Eat!",
    "Shuffling deliciousness.",
    "Locating yum.",
    "Calibrating hunger.",
]
EXHAUSTED_MESSAGE = "We've seen it all. Let's find a fallback."
LOOKING_FOR_FALLBACKS_MESSAGE = "No winners yet. Checking the rejects..."
UNNAMED_RESTAURANT = "?!?"
PREVIEW_SIZE = 10


# Events


@dataclass
class SearchEvent:
    type: ClassVar[str] = ""

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, **self.payload()}


@dataclass
class SearchingEvent(SearchEvent):
    type: ClassVar[str] = "searching"
    message: str = ""

    def payload(self):
        return {"message": self.message}


@dataclass
class ExhaustedEvent(SearchEvent):
    type: ClassVar[str] = "exhausted"
    message: str = EXHAUSTED_MESSAGE

    def payload(self):
        return {"message": self.message}


@dataclass
class BatchDiscoveredEvent(SearchEvent):
    type: ClassVar[str] = "batch-discovered"
    count: int = 0
    message: str = ""

    def payload(self):
        return {"count": self.count, "message": self.message}


@dataclass
class CheckingRestaurantsEvent(SearchEvent):
    type: ClassVar[str] = "checking-restaurants"
    names: List[str] = field(default_factory=list)

    def payload(self):
        return {"names": list(self.names)}


@dataclass
class LookingForFallbacksEvent(SearchEvent):
    type: ClassVar[str] = "looking-for-fallbacks"
    message: str = LOOKING_FOR_FALLBACKS_MESSAGE

    def payload(self):
        return {"message": self.message}


@dataclass
class ResultEvent(SearchEvent):
    type: ClassVar[str] = "result"
    candidate: Optional[SearchCandidate] = None

    def payload(self):
        return {"candidate": self.candidate.model_dump(mode="json") if self.candidate else None}


@dataclass
class RedirectEvent(SearchEvent):
    type: ClassVar[str] = "redirect"
    url: str = ""

    def payload(self):
        return {"url": self.url}


# Configuration and collaborators


@dataclass(frozen=True)
class DistanceBand:
    range_in_meters: int
    timeout_in_ms: int


DEFAULT_DISTANCE_BANDS: Dict[DistanceRange, DistanceBand] = {
    DistanceRange.CLOSE: DistanceBand(range_in_meters=1_500, timeout_in_ms=5_000),
    DistanceRange.MID_RANGE: DistanceBand(range_in_meters=12_000, timeout_in_ms=10_000),
    DistanceRange.FAR: DistanceBand(range_in_meters=30_000, timeout_in_ms=25_000),
}


@dataclass(frozen=True)
class SearchEngineConfiguration:
    bands: Dict[DistanceRange, DistanceBand] = field(default_factory=lambda: dict(DEFAULT_DISTANCE_BANDS))
    discovery: DiscoveryConfiguration = DiscoveryConfiguration()
    idle_wait_in_seconds: float = 0.5

    def band(self, distance_range: str) -> DistanceBand:
        return self.bands[DistanceRange(distance_range)]


@dataclass
class SearchContext:
    searches: SearchRepository
    candidates: CandidateRepository
    restaurants: RestaurantRepository
    matchings: MatchingRepository
    matchers: MatcherRegistry
    discovery: LoadBalancer[List[DiscoveredRestaurantProfile]]
    validator: Validator = validate_restaurant
    configuration: SearchEngineConfiguration = field(default_factory=SearchEngineConfiguration)
    matching: RestaurantMatchingConfiguration = field(default_factory=RestaurantMatchingConfiguration)


# Engine


def _no_restaurant_found(context: SearchContext, search_id: int, order: int) -> SearchCandidate:
    return context.candidates.create(
        search_id=search_id,
        restaurant_id=None,
        order=order,
        status=CandidateStatus.REJECTED,
        rejection_reason=RejectionReason.NO_RESTAURANT_FOUND,
    )


async def _replay_exhausted_search(
    context: SearchContext, search_id: int, latest_candidate_id: Optional[int], order: int
) -> AsyncIterator[SearchEvent]:
    yield ExhaustedEvent()

    candidate = None
    if latest_candidate_id is not None:
        found = context.candidates.find_by_id(latest_candidate_id, search_id)
        candidate = found.candidate if found else None
    if candidate is None:
        candidate = _no_restaurant_found(context, search_id, order + 1)

    yield ResultEvent(candidate=candidate)


async def search_candidate(
    search_id: int,
    locale: str,
    context: SearchContext,
    token: Optional[CancellationToken] = None,
) -> AsyncIterator[SearchEvent]:
    """Stream progress events until a candidate is returned, recovered or given up on."""
    token = token or CancellationToken()
    with search_context(search_id):
        yield SearchingEvent(message=random.choice(SEARCHING_MESSAGES))

        latest = context.searches.find_with_latest_candidate_id(search_id)
        if latest is None:
            raise SearchNotFoundError(search_id)

        if latest.exhausted:
            logger.info("search already exhausted, replaying last candidate")
            async for event in _replay_exhausted_search(context, search_id, latest.latest_candidate_id, latest.order):
                yield event
            return

        candidate_context = context.searches.find_by_id_with_candidate_context(search_id)
        if candidate_context is None:
            raise SearchNotFoundError(search_id)
        search = candidate_context.search

        band = context.configuration.band(search.distance_range)
        scanner = RestaurantDiscoveryScanner(
            latitude=search.latitude,
            longitude=search.longitude,
            initial_range_in_meters=band.range_in_meters,
            timeout_in_ms=band.timeout_in_ms,
            configuration=context.configuration.discovery,
            strategies=context.discovery,
            identities_to_exclude=candidate_context.profiles,
        )

        order = latest.order + 1
        last_candidate: Optional[SearchCandidate] = None
        returned: Optional[SearchCandidate] = None

        while returned is None and not scanner.is_over:
            token.raise_if_cancelled()

            restaurants = await scanner.next_restaurants(token)
            if not restaurants:
                if not scanner.is_over:
                    await token.sleep(context.configuration.idle_wait_in_seconds)
                continue

            yield BatchDiscoveredEvent(count=len(restaurants), message=f"{len(restaurants)} options detected! Digging in...")
            random.shuffle(restaurants)
            preview = [r.name for r in restaurants if r.name][:PREVIEW_SIZE]
            if preview:
                yield CheckingRestaurantsEvent(names=preview)

            for discovered in restaurants:
                token.raise_if_cancelled()
                yield CheckingRestaurantsEvent(names=[discovered.name or UNNAMED_RESTAURANT])
                token.raise_if_cancelled()

                restaurant = await enrich_restaurant(
                    discovered,
                    locale,
                    context.restaurants,
                    context.matchings,
                    context.matchers,
                    context.matching,
                    token,
                )
                validation = context.validator(restaurant, search)
                last_candidate = context.candidates.create(
                    search_id=search_id,
                    restaurant_id=restaurant.id,
                    order=order,
                    status=CandidateStatus.RETURNED if validation.valid else CandidateStatus.REJECTED,
                    rejection_reason=validation.rejection_reason,
                )
                order += 1
                logger.info(
                    "candidate evaluated",
                    candidate_id=last_candidate.id,
                    restaurant_id=restaurant.id,
                    status=last_candidate.status,
                    rejection_reason=last_candidate.rejection_reason,
                )

                scanner.add_identity_to_exclude(discovered.identity)
                for profile in restaurant.profiles:
                    scanner.add_identity_to_exclude(profile)

                if validation.valid:
                    returned = last_candidate
                    break

        if returned is None:
            yield LookingForFallbacksEvent()
            fallback = context.candidates.find_best_rejected_candidate_that_could_serve_as_fallback(search_id)
            if fallback is not None:
                last_candidate = context.candidates.recover_candidate(fallback, order)
                logger.info("fallback recovered", candidate_id=last_candidate.id, recovered_from=fallback.id)
            else:
                last_candidate = _no_restaurant_found(context, search_id, order)
                logger.info("no restaurant found")

        if last_candidate is None or last_candidate.status == CandidateStatus.REJECTED.value:
            context.searches.mark_search_as_exhausted(search_id)

        yield ResultEvent(candidate=last_candidate)
