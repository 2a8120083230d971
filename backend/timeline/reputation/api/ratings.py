"""Reputation score endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from timeline.api.errors import to_http_error
from timeline.container import get_coalescer
from timeline.reputation.domain.exceptions import ReputationError
from timeline.reputation.schemas import dto
from timeline.settings import settings

router = APIRouter(prefix="/users", tags=["reputation"])


@router.get("/{user_id}/rating", response_model=dto.RatingOut, response_model_exclude_none=True)
async def get_rating(user_id: str, detail: bool = Query(default=False)) -> dto.RatingOut:
    try:
        result = await get_coalescer().get_score(user_id)
    except ReputationError as exc:
        raise to_http_error(exc) from exc
    return dto.RatingOut.from_result(user_id, result, detail=detail)


@router.post("/ratings/batch", response_model=dto.BatchRatingResponse, response_model_exclude_none=True)
async def get_ratings_batch(payload: dto.BatchRatingRequest) -> dto.BatchRatingResponse:
    # IDs past the cap are ignored rather than rejected
    user_ids = list(dict.fromkeys(payload.user_ids))[: settings.reputation_max_batch_request]
    results = await get_coalescer().get_scores(user_ids)
    return dto.BatchRatingResponse(
        ratings={user_id: dto.RatingOut.from_result(user_id, result) for user_id, result in results.items()}
    )
