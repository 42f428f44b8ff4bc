"""
Search endpoints.

- POST /searches                                  create a search
- GET  /searches/{id}                             read it back
- GET  /searches/{id}/stream                      run the engine, NDJSON progress events
- GET  /searches/{id}/candidates/{candidate_id}   a candidate with its restaurant view

The stream ends with a `redirect` event pointing at the candidate page once the
result is known. Closing the connection cancels the run; candidates already
persisted stay, and the next stream call carries on from them.
"""

import json
from dataclasses import asdict
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from sqlmodel import Session

from app.api import deps
from app.core.cancellation import CancellationToken
from app.core.errors import OperationCancelledError, SearchNotFoundError
from app.core.logging_config import get_logger
from app.db import get_session
from app.repositories.candidate import SqlCandidateRepository
from app.repositories.search import SqlSearchRepository
from app.schemas import CandidateOut, SearchCreate, SearchOut
from app.services.factory import Runtime, build_search_context
from app.services.search_engine import RedirectEvent, ResultEvent, SearchEvent, search_candidate
from app.services.view import build_restaurant_view

logger = get_logger(__name__)

router = APIRouter()

DEFAULT_LOCALE = "en"
NDJSON_MEDIA_TYPE = "application/x-ndjson"


def candidate_url(search_id: int, candidate_id: int) -> str:
    return f"/searches/{search_id}/candidates/{candidate_id}"


def resolve_locale(request: Request, locale: Optional[str]) -> str:
    if locale:
        return locale
    accept_language = request.headers.get("accept-language", "")
    first = accept_language.split(",")[0].split(";")[0].strip()
    return first or DEFAULT_LOCALE


def encode_event(event: SearchEvent) -> str:
    return json.dumps(event.to_dict(), default=str) + "\n"


@router.post("", response_model=SearchOut, status_code=201)
def create_search(payload: SearchCreate, session: Session = Depends(get_session)) -> Any:
    search = SqlSearchRepository(session).create(
        latitude=payload.latitude,
        longitude=payload.longitude,
        service_date=payload.service_date or datetime.now(),
        service_timeslot=payload.service_timeslot,
        distance_range=payload.distance_range,
        avoid_fast_food=payload.avoid_fast_food,
        avoid_takeaway=payload.avoid_takeaway,
    )
    logger.info("search created", search_id=search.id, distance_range=search.distance_range)
    return search


@router.get("/{search_id}", response_model=SearchOut)
def read_search(search_id: int, session: Session = Depends(get_session)) -> Any:
    search = SqlSearchRepository(session).find_by_id(search_id)
    if not search:
        raise HTTPException(status_code=404, detail="Search not found")
    return search


@router.get("/{search_id}/stream")
def stream_search(
    search_id: int,
    request: Request,
    locale: Optional[str] = Query(default=None, max_length=20),
    session: Session = Depends(get_session),
    runtime: Runtime = Depends(deps.get_runtime),
    session_factory: deps.SessionFactory = Depends(deps.get_session_factory),
) -> StreamingResponse:
    if SqlSearchRepository(session).find_by_id(search_id) is None:
        raise HTTPException(status_code=404, detail="Search not found")

    language = resolve_locale(request, locale)

    async def events() -> AsyncIterator[str]:
        token = CancellationToken()
        with session_factory() as stream_session:
            context = build_search_context(stream_session, runtime)
            try:
                async for event in search_candidate(search_id, language, context, token):
                    yield encode_event(event)
                    if isinstance(event, ResultEvent) and event.candidate is not None:
                        url = candidate_url(search_id, event.candidate.id)
                        yield encode_event(RedirectEvent(url=url))
            except (OperationCancelledError, SearchNotFoundError) as e:
                logger.info("search stream stopped", search_id=search_id, reason=str(e))
            except Exception as e:
                logger.error("search stream failed", search_id=search_id, error=str(e))
                yield json.dumps({"type": "error", "message": str(e)}) + "\n"
            finally:
                token.cancel("stream closed")

    return StreamingResponse(events(), media_type=NDJSON_MEDIA_TYPE)


@router.get("/{search_id}/candidates/{candidate_id}", response_model=CandidateOut)
def read_candidate(search_id: int, candidate_id: int, session: Session = Depends(get_session)) -> Any:
    search = SqlSearchRepository(session).find_by_id(search_id)
    if not search:
        raise HTTPException(status_code=404, detail="Search not found")

    found = SqlCandidateRepository(session).find_by_id(candidate_id, search_id)
    if not found:
        raise HTTPException(status_code=404, detail="Candidate not found")

    candidate = found.candidate
    restaurant = None
    if found.restaurant is not None:
        restaurant = asdict(build_restaurant_view(found.restaurant, search.service_instant))

    return CandidateOut(
        id=candidate.id,
        search_id=candidate.search_id,
        order=candidate.order,
        status=candidate.status,
        rejection_reason=candidate.rejection_reason,
        recovered_from_candidate_id=candidate.recovered_from_candidate_id,
        created_at=candidate.created_at,
        restaurant=restaurant,
    )
