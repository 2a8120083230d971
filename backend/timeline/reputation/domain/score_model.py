"""Reputation score formula and tier mapping.

Recent activity counts linearly; lifetime volume enters through square roots
and account age through a logarithm. Every term is non-decreasing in its
counter.
"""

from __future__ import annotations

from bisect import bisect_left
from math import floor, log, sqrt

from timeline.reputation.domain.models import RatingColor, ScoreInput, ScoreResult

W_RECENT_POSTS = 10.0
W_TOTAL_POSTS = 15.0
W_RECENT_REPOSTS_GIVEN = 5.0
W_TOTAL_REPOSTS_GIVEN = 7.0
W_RECENT_FAVORITES_RECEIVED = 8.0
W_TOTAL_FAVORITES_RECEIVED = 5.0
W_FOLLOWERS = 10.0
W_ACCOUNT_AGE = 5.0

# Inclusive upper bound of every tier but the last; each tier doubles the previous
TIER_UPPER_BOUNDS: tuple[int, ...] = (64, 128, 256, 512, 1024, 2048, 4096, 8192, 16384, 32768)
_TIERS: tuple[RatingColor, ...] = tuple(RatingColor)

DEFAULT_DRIFT_THRESHOLD = 50


def _n(value: int) -> int:
	return value if value > 0 else 0


def raw_score(counters: ScoreInput) -> float:
	age_days = max(_n(counters.account_age_days), 1)
	return (
		_n(counters.recent_posts) * W_RECENT_POSTS
		+ sqrt(_n(counters.total_posts)) * W_TOTAL_POSTS
		+ _n(counters.recent_reposts_given) * W_RECENT_REPOSTS_GIVEN
		+ sqrt(_n(counters.total_reposts_given)) * W_TOTAL_REPOSTS_GIVEN
		+ sqrt(_n(counters.recent_favorites_received)) * W_RECENT_FAVORITES_RECEIVED
		+ sqrt(_n(counters.total_favorites_received)) * W_TOTAL_FAVORITES_RECEIVED
		+ sqrt(_n(counters.followers)) * W_FOLLOWERS
		+ log(age_days + 1) * W_ACCOUNT_AGE
	)


def bucket_for_score(score: int) -> RatingColor:
	"""Map a score to its tier; negative scores fall in the lowest one."""

	return _TIERS[bisect_left(TIER_UPPER_BOUNDS, score)]


def compute(counters: ScoreInput) -> ScoreResult:
	score = floor(raw_score(counters))
	return ScoreResult(score=score, bucket=bucket_for_score(score), stats=counters)


def exceeds_drift(score: int, stored: int | None, threshold: int = DEFAULT_DRIFT_THRESHOLD) -> bool:
	"""Whether a freshly computed score is far enough from the stored one to write back."""

	if stored is None:
		return True
	return abs(score - stored) > threshold


__all__ = [
	"TIER_UPPER_BOUNDS",
	"DEFAULT_DRIFT_THRESHOLD",
	"raw_score",
	"bucket_for_score",
	"compute",
	"exceeds_drift",
]
