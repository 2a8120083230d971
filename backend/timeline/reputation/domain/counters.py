"""Storage contracts consumed by the reputation engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Protocol, Sequence

from timeline.reputation.domain.exceptions import UnknownUser
from timeline.reputation.domain.models import ScoreInput

REASON_RECOMPUTE = "recompute"


class CounterSource(Protocol):
	"""Supplies reputation counters for one or many users per round trip."""

	async def batch(self, user_ids: Sequence[str]) -> Mapping[str, ScoreInput]:
		"""Counters for every known id; unknown ids are left out of the map."""
		...

	async def single(self, user_id: str) -> ScoreInput:
		"""Counters for one id; raises :class:`UnknownUser` when absent."""
		...


@dataclass(slots=True)
class RatingHistoryEntry:
	user_id: str
	delta: int
	rating: int
	reason: str
	created_at: datetime


class ScoreStore(Protocol):
	"""Durable home of the last persisted score and its history."""

	async def get_stored_score(self, user_id: str) -> int | None:
		...

	async def record_score(self, user_id: str, score: int, *, delta: int, reason: str) -> None:
		...


class InMemoryCounterSource(CounterSource):
	"""Reference counter source used in tests and developer environments."""

	def __init__(self, counters: Mapping[str, ScoreInput] | None = None) -> None:
		self.counters: dict[str, ScoreInput] = dict(counters or {})
		self.batch_calls: list[list[str]] = []
		self.single_calls: list[str] = []

	async def batch(self, user_ids: Sequence[str]) -> Mapping[str, ScoreInput]:
		self.batch_calls.append(list(user_ids))
		return {user_id: self.counters[user_id] for user_id in user_ids if user_id in self.counters}

	async def single(self, user_id: str) -> ScoreInput:
		self.single_calls.append(user_id)
		try:
			return self.counters[user_id]
		except KeyError:
			raise UnknownUser(user_id) from None


class InMemoryScoreStore(ScoreStore):
	def __init__(self) -> None:
		self.scores: dict[str, int] = {}
		self.history: list[RatingHistoryEntry] = []

	async def get_stored_score(self, user_id: str) -> int | None:
		return self.scores.get(user_id)

	async def record_score(self, user_id: str, score: int, *, delta: int, reason: str) -> None:
		self.scores[user_id] = score
		self.history.append(
			RatingHistoryEntry(
				user_id=user_id,
				delta=delta,
				rating=score,
				reason=reason,
				created_at=datetime.now(timezone.utc),
			)
		)
