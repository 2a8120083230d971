"""Pydantic schemas for the reputation API."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from timeline.reputation.domain.models import RatingColor, ScoreResult


class ScoreStatsOut(BaseModel):
	recent_posts: int
	total_posts: int
	recent_reposts_given: int
	total_reposts_given: int
	recent_reposts_received: int
	total_reposts_received: int
	recent_favorites_given: int
	total_favorites_given: int
	recent_favorites_received: int
	total_favorites_received: int
	followers: int
	account_age_days: int


class RatingOut(BaseModel):
	user_id: str
	score: int
	bucket: RatingColor
	stats: Optional[ScoreStatsOut] = None

	@classmethod
	def from_result(cls, user_id: str, result: ScoreResult, *, detail: bool = False) -> "RatingOut":
		stats = None
		if detail and result.stats is not None:
			stats = ScoreStatsOut(**result.stats.as_dict())
		return cls(user_id=user_id, score=result.score, bucket=result.bucket, stats=stats)


class BatchRatingRequest(BaseModel):
	user_ids: List[str] = Field(default_factory=list)


class BatchRatingResponse(BaseModel):
	ratings: Dict[str, RatingOut]
