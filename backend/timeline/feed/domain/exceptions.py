"""Custom exceptions for feed merging."""

from __future__ import annotations

from fastapi import status


class FeedError(Exception):
	"""Base class for feed related errors."""

	status_code: int = status.HTTP_400_BAD_REQUEST
	detail: str = "feed_error"

	def __init__(self, detail: str | None = None) -> None:
		super().__init__(detail or self.detail)
		if detail:
			self.detail = detail


class SourceUnavailable(FeedError):
	"""One feed source failed or timed out; the merger degrades around it."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "source_unavailable"

	def __init__(self, source: str, detail: str | None = None) -> None:
		super().__init__(detail)
		self.source = source


class FeedUnavailable(FeedError):
	"""Every feed source failed for the same page request."""

	status_code = status.HTTP_503_SERVICE_UNAVAILABLE
	detail = "feed_unavailable"


class InvalidCursor(FeedError):
	"""A pagination cursor could not be decoded."""

	status_code = status.HTTP_400_BAD_REQUEST
	detail = "invalid_cursor"
