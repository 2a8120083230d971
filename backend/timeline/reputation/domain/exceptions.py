"""Custom exceptions for reputation scoring."""

from __future__ import annotations

from fastapi import status


class ReputationError(Exception):
	"""Base class for reputation related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "reputation_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class CounterUnavailable(ReputationError):
	"""A counter source round trip failed."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "counter_unavailable"


class UnknownUser(ReputationError):
	"""The counter source has no record of the requested user."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "user_not_found"

	def __init__(self, user_id: str) -> None:
		super().__init__()
		self.user_id = user_id


class ScoreUnavailable(ReputationError):
	"""No score could be produced for one user, even after the single-item retry."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "score_unavailable"

	def __init__(self, user_id: str) -> None:
		super().__init__()
		self.user_id = user_id
