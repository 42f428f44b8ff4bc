from .search import Search, SearchCandidate, DistanceRange, ServiceTimeslot, CandidateStatus, RejectionReason
from .restaurant import Restaurant, RestaurantProfile, RestaurantMatchingAttempt, RestaurantAndProfiles
from .circuit_breaker_state import CircuitBreakerState

__all__ = [
    "Search",
    "SearchCandidate",
    "DistanceRange",
    "ServiceTimeslot",
    "CandidateStatus",
    "RejectionReason",
    "Restaurant",
    "RestaurantProfile",
    "RestaurantMatchingAttempt",
    "RestaurantAndProfiles",
    "CircuitBreakerState",
]
