"""
Matching API routes.

Recommendations, explicit claims, parameter administration and metrics.
"""

from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from hopelink.core.config import get_settings
from hopelink.db.base import get_db
from hopelink.matching.config import MatchingParameters
from hopelink.matching.engine import MatchingEngine, refresh_recommendations
from hopelink.matching.errors import (
    CandidateNotFoundError,
    MatchingError,
    ParameterValidationError,
    StaleCandidateError,
    TransientFetchError,
)
from hopelink.matching.metrics import get_metrics
from hopelink.matching.models import (
    MatchCandidate,
    OptimalMatch,
    RecommendationSet,
    SmartMatchResult,
)
from hopelink.matching.parameters import get_parameter_store

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/matching", tags=["matching"])


class CreateMatchRequest(BaseModel):
    """Body for an explicit claim."""

    request_id: int = Field(..., ge=1)
    donation_id: int = Field(..., ge=1)
    volunteer_id: Optional[int] = Field(default=None, ge=1)
    created_by: Optional[int] = Field(default=None, ge=1)


class UpdateParametersRequest(BaseModel):
    """Body for a parameter update."""

    updates: Dict[str, Any] = Field(
        ..., description="Nested or dotted-path edits, e.g. {'weights.user_reliability': 0.2}"
    )
    admin_user_id: Optional[int] = None


class CandidateListResponse(BaseModel):
    """Ranked candidates for one subject."""

    subject_id: int
    count: int
    candidates: List[MatchCandidate]


class OptimalMatchesResponse(BaseModel):
    count: int
    matches: List[OptimalMatch]


def to_http_error(e: MatchingError) -> HTTPException:
    """Map a matching error onto an HTTP error with a structured detail."""
    if isinstance(e, ParameterValidationError):
        detail: Dict[str, Any] = {"error": "validation_error", "message": str(e)}
        if e.weight_percentage is not None:
            detail["weight_percentage"] = e.weight_percentage
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)
    if isinstance(e, StaleCandidateError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "stale_candidate", "message": str(e), "refresh_required": True},
        )
    if isinstance(e, CandidateNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": str(e)},
        )
    if isinstance(e, TransientFetchError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "temporarily_unavailable", "message": str(e), "retry": True},
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "matching_error", "message": str(e)},
    )


@router.get("/recommendations", response_model=RecommendationSet)
async def get_recommendations(
    user_id: int = Query(..., ge=1),
    role: str = Query(..., description="donor, recipient or volunteer"),
    limit: Optional[int] = Query(default=None, ge=1, le=50),
):
    """
    Role-specific recommendations for a user.

    Concurrent refreshes for the same user, role and limit share one
    computation.
    """
    try:
        return await refresh_recommendations(user_id, role, limit)
    except MatchingError as e:
        logger.warning(f"Recommendations failed for user {user_id} ({role}): {e}")
        raise to_http_error(e)


@router.post("/matches", response_model=SmartMatchResult)
async def create_match(body: CreateMatchRequest, db: AsyncSession = Depends(get_db)):
    """
    Claim a donation for a request.

    Retrying the same claim returns the existing match with ``created`` set
    to false. A 409 with ``refresh_required`` means the candidate was taken
    since it was shown.
    """
    engine = MatchingEngine(db)
    try:
        return await engine.create_smart_match(
            body.request_id, body.donation_id, body.volunteer_id, body.created_by
        )
    except MatchingError as e:
        raise to_http_error(e)


@router.get("/requests/{request_id}/matches", response_model=CandidateListResponse)
async def get_request_matches(
    request_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Ranked donations for one request."""
    try:
        candidates = await MatchingEngine(db).find_matches_for_request(request_id, limit)
    except MatchingError as e:
        raise to_http_error(e)
    return CandidateListResponse(
        subject_id=request_id, count=len(candidates), candidates=candidates
    )


@router.get("/donations/{donation_id}/matches", response_model=CandidateListResponse)
async def get_donation_matches(
    donation_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Ranked requests for one donation."""
    try:
        candidates = await MatchingEngine(db).find_matches_for_donation(donation_id, limit)
    except MatchingError as e:
        raise to_http_error(e)
    return CandidateListResponse(
        subject_id=donation_id, count=len(candidates), candidates=candidates
    )


@router.get("/matches/{match_id}/volunteers", response_model=CandidateListResponse)
async def get_match_volunteers(
    match_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Ranked volunteers for a match awaiting delivery."""
    try:
        candidates = await MatchingEngine(db).find_volunteers_for_task(match_id, limit)
    except MatchingError as e:
        raise to_http_error(e)
    return CandidateListResponse(subject_id=match_id, count=len(candidates), candidates=candidates)


@router.get("/optimal", response_model=OptimalMatchesResponse)
async def get_optimal_matches(
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Best pairings across all open requests, with volunteers where needed."""
    try:
        matches = await MatchingEngine(db).find_optimal_matches(limit)
    except MatchingError as e:
        raise to_http_error(e)
    return OptimalMatchesResponse(count=len(matches), matches=matches)


@router.get("/parameters", response_model=Dict[str, MatchingParameters])
async def list_parameters(db: AsyncSession = Depends(get_db)):
    """Active parameters of every context, keyed by context."""
    try:
        records = await get_parameter_store().get_all(db)
        return {params.context: params for params in records}
    except MatchingError as e:
        raise to_http_error(e)


@router.get("/parameters/{context}", response_model=MatchingParameters)
async def get_parameters(context: str, db: AsyncSession = Depends(get_db)):
    """Active parameters of one context (defaults are created on first read)."""
    try:
        return await get_parameter_store().get(db, context)
    except MatchingError as e:
        raise to_http_error(e)


@router.put("/parameters/{context}", response_model=MatchingParameters)
async def update_parameters(
    context: str, body: UpdateParametersRequest, db: AsyncSession = Depends(get_db)
):
    """
    Update a context's parameters.

    Rejected with 422 when weights stray more than 5% from 100% or the
    auto-claim threshold sits below the auto-match threshold.
    """
    try:
        params = await get_parameter_store().update(
            db, context, body.updates, body.admin_user_id
        )
    except MatchingError as e:
        logger.warning(f"Parameter update for {context} rejected: {e}")
        raise to_http_error(e)
    return params


@router.get("/metrics")
async def get_matching_metrics():
    """In-process matching counters since startup."""
    return get_metrics().get_summary()
