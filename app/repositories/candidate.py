"""Search candidate persistence. Candidates are append-only."""

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import case
from sqlmodel import Session, select

from app.core.typing import col
from app.models.restaurant import RestaurantAndProfiles
from app.models.search import CandidateStatus, RejectionReason, SearchCandidate
from app.repositories.restaurant import SqlRestaurantRepository

# Rejection reasons a restaurant can be served despite, best first
FALLBACK_REASONS = (
    RejectionReason.NO_IMAGE,
    RejectionReason.UNKNOWN_OPENING_HOURS,
    RejectionReason.FAST_FOOD,
    RejectionReason.TAKEAWAY,
)


@dataclass
class CandidateWithRestaurant:
    candidate: SearchCandidate
    restaurant: Optional[RestaurantAndProfiles] = None


class CandidateRepository(Protocol):
    def create(
        self,
        search_id: int,
        restaurant_id: Optional[int],
        order: int,
        status: CandidateStatus,
        rejection_reason: Optional[RejectionReason] = None,
        recovered_from_candidate_id: Optional[int] = None,
    ) -> SearchCandidate: ...

    def find_by_id(self, candidate_id: int, search_id: int) -> Optional[CandidateWithRestaurant]: ...

    def find_best_rejected_candidate_that_could_serve_as_fallback(
        self, search_id: int
    ) -> Optional[SearchCandidate]: ...

    def recover_candidate(self, candidate: SearchCandidate, order: int) -> SearchCandidate: ...


class SqlCandidateRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        search_id: int,
        restaurant_id: Optional[int],
        order: int,
        status: CandidateStatus,
        rejection_reason: Optional[RejectionReason] = None,
        recovered_from_candidate_id: Optional[int] = None,
    ) -> SearchCandidate:
        candidate = SearchCandidate(
            search_id=search_id,
            restaurant_id=restaurant_id,
            order=order,
            status=CandidateStatus(status).value,
            rejection_reason=RejectionReason(rejection_reason).value if rejection_reason else None,
            recovered_from_candidate_id=recovered_from_candidate_id,
        )
        self.session.add(candidate)
        self.session.commit()
        self.session.refresh(candidate)
        return candidate

    def find_by_id(self, candidate_id: int, search_id: int) -> Optional[CandidateWithRestaurant]:
        candidate = self.session.exec(
            select(SearchCandidate).where(SearchCandidate.id == candidate_id, SearchCandidate.search_id == search_id)
        ).first()
        if candidate is None:
            return None
        restaurant = None
        if candidate.restaurant_id is not None:
            restaurant = SqlRestaurantRepository(self.session).find_by_id(candidate.restaurant_id)
        return CandidateWithRestaurant(candidate=candidate, restaurant=restaurant)

    def find_best_rejected_candidate_that_could_serve_as_fallback(
        self, search_id: int
    ) -> Optional[SearchCandidate]:
        reasons = [reason.value for reason in FALLBACK_REASONS]
        preference = case(
            {reason: index for index, reason in enumerate(reasons)},
            value=SearchCandidate.rejection_reason,
        )
        return self.session.exec(
            select(SearchCandidate)
            .where(
                SearchCandidate.search_id == search_id,
                SearchCandidate.status == CandidateStatus.REJECTED.value,
                col(SearchCandidate.restaurant_id).is_not(None),
                col(SearchCandidate.rejection_reason).in_(reasons),
            )
            .order_by(preference, col(SearchCandidate.order))
            .limit(1)
        ).first()

    def recover_candidate(self, candidate: SearchCandidate, order: int) -> SearchCandidate:
        """Serve a rejected candidate's restaurant anyway, as a new Returned candidate."""
        return self.create(
            search_id=candidate.search_id,
            restaurant_id=candidate.restaurant_id,
            order=order,
            status=CandidateStatus.RETURNED,
            recovered_from_candidate_id=candidate.id,
        )
